"""Slack attendance bot: clock-in/clock-out records and overtime/undertime
approvals kept in a Google Sheets workbook (one worksheet per year)."""

__version__ = "0.3.0"
