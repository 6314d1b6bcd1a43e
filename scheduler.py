import time
import threading
import logging
import smtplib
import schedule
from datetime import datetime, timedelta
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from app import app
from models import Match, MatchStatus
from job_matcher import run_matching_for_all_candidates
from storage import get_storage
from utils import ConfigHelper

logger = logging.getLogger(__name__)

HIGH_MATCH_SCORE = 80

def matching_sweep():
    """Run matching for every candidate inside an app context"""
    with app.app_context():
        try:
            return run_matching_for_all_candidates()
        except Exception as e:
            logger.error(f"Error running matching sweep: {e}")
            return None

def deactivate_expired_jobs():
    """Deactivate jobs whose expiry date has passed"""
    with app.app_context():
        try:
            count = get_storage().deactivate_expired_jobs()
            logger.info(f"Deactivated {count} expired jobs")
            return count
        except Exception as e:
            logger.error(f"Error deactivating expired jobs: {e}")
            return None

def build_match_report(matches, since):
    """Summarize the matches created since ``since``"""
    recent = [m for m in matches if m.created_at and m.created_at >= since]
    top = sorted(recent, key=lambda m: m.score, reverse=True)[:10]

    return {
        'date': datetime.now().strftime('%Y-%m-%d'),
        'new_matches': len(recent),
        'high_matches': sum(1 for m in recent if m.score >= HIGH_MATCH_SCORE),
        'unlocked_matches': sum(1 for m in recent if m.status == MatchStatus.UNLOCKED),
        'top_matches': [
            {
                'match_id': m.id,
                'job_id': m.job_id,
                'candidate_id': m.candidate_id,
                'score': m.score
            }
            for m in top
        ]
    }

def generate_daily_match_report():
    """Generate the daily matching report"""
    with app.app_context():
        try:
            since = datetime.utcnow() - timedelta(days=1)
            matches = Match.query.filter(Match.created_at >= since).all()
            report = build_match_report(matches, since)

            logger.info(f"Generated daily report: {report['new_matches']} new matches, {report['high_matches']} high matches")

            if ConfigHelper.get_smtp_config()['enabled']:
                send_match_report_email(report)

            return report

        except Exception as e:
            logger.error(f"Error generating daily report: {e}")
            return None

def send_match_report_email(report):
    """Send the daily report via email"""
    try:
        smtp_config = ConfigHelper.get_smtp_config()
        recipients = smtp_config['recipients']

        if not smtp_config['smtp_user'] or not recipients:
            logger.warning("SMTP credentials or recipients not configured for daily reports")
            return

        msg = MIMEMultipart()
        msg['From'] = smtp_config['smtp_user']
        msg['To'] = ', '.join(recipients)
        msg['Subject'] = f"Daily Matching Report - {report['date']}"

        rows = "".join(
            f"<tr><td>{m['match_id']}</td><td>{m['job_id']}</td><td>{m['candidate_id']}</td><td>{m['score']}%</td></tr>"
            for m in report['top_matches']
        )
        html_content = f"""
        <html>
        <body style="font-family: Arial, sans-serif;">
            <h2>Daily Matching Report</h2>
            <p>Report Date: {report['date']}</p>
            <ul>
                <li>New matches: {report['new_matches']}</li>
                <li>High score matches ({HIGH_MATCH_SCORE}+): {report['high_matches']}</li>
                <li>Fully unlocked matches: {report['unlocked_matches']}</li>
            </ul>
            <table>
                <thead><tr><th>Match</th><th>Job</th><th>Candidate</th><th>Score</th></tr></thead>
                <tbody>{rows}</tbody>
            </table>
        </body>
        </html>
        """

        msg.attach(MIMEText(html_content, 'html'))

        with smtplib.SMTP(smtp_config['smtp_server'], smtp_config['smtp_port']) as server:
            server.starttls()
            server.login(smtp_config['smtp_user'], smtp_config['smtp_password'])
            server.send_message(msg)

        logger.info(f"Daily report sent to {len(recipients)} recipients")

    except Exception as e:
        logger.error(f"Error sending daily report email: {e}")

def schedule_tasks():
    """Schedule all background tasks"""
    scheduler_config = ConfigHelper.get_scheduler_config()

    schedule.every().day.at(scheduler_config['matching_run_time']).do(matching_sweep)
    schedule.every().day.at(scheduler_config['report_time']).do(generate_daily_match_report)
    schedule.every().hour.do(deactivate_expired_jobs)

    logger.info("Scheduled tasks configured")

def run_scheduler():
    """Run the scheduler loop"""
    logger.info("Starting scheduler...")

    while True:
        try:
            schedule.run_pending()
            time.sleep(60)  # Check every minute
        except KeyboardInterrupt:
            logger.info("Scheduler stopped")
            break
        except Exception as e:
            logger.error(f"Scheduler error: {e}")
            time.sleep(300)  # Wait 5 minutes before retrying

def start_background_services():
    """Start all background services"""
    logger.info("Starting background services...")

    schedule_tasks()

    if ConfigHelper.get_scheduler_config()['run_matching_on_startup']:
        startup_thread = threading.Thread(target=matching_sweep, daemon=True)
        startup_thread.start()
        logger.info("Startup matching sweep started")

    scheduler_thread = threading.Thread(target=run_scheduler, daemon=True)
    scheduler_thread.start()
    logger.info("Scheduler started")

    logger.info("All background services started successfully")

if __name__ == '__main__':
    start_background_services()

    # Keep main thread alive
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Background services stopped")
