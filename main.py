#!/usr/bin/env python3
"""
Main entry point for the recruitment marketplace service.
This is a lightweight Flask app that provides:
- JSON API for users, candidate profiles and job postings
- Candidate/job matching, run on demand and as a daily batch sweep
- Match listing and unlock recording for both sides of a match
"""

from app import app

if __name__ == '__main__':
    app.run()
