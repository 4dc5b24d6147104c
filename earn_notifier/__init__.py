"""
Superteam Earn Notification Bot

Watches Superteam Earn for new bounties and projects, matches each one
against every user's saved preferences and sends the matching listings
to them on Telegram once they are twelve hours old.
"""

__version__ = "0.1.0"
__author__ = "Earn Notifier Team"
