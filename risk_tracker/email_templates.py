"""Email drafts for student risk notifications. Sending them is not handled here."""

import os
from datetime import datetime
from typing import Dict, Iterable, Optional

from risk_tracker.models import RiskTier, StudentRecord
from risk_tracker.risk import (
    ATTENDANCE_THRESHOLD,
    LOW_ATTENDANCE,
    LOW_SCORE,
    SCORE_THRESHOLD,
    UNPAID_FEE,
    risk_issues,
    summarize_tiers,
)


def get_advisor_info() -> Dict[str, str]:
    """Get advisor name and email from environment or defaults."""
    return {
        'name': os.getenv('ADVISOR_NAME', 'Academic Advisor'),
        'email': os.getenv('ADVISOR_EMAIL', 'advisor@example.com')
    }


def _fmt(value: float) -> str:
    return f"{value:g}"


def generate_email_draft(record: StudentRecord) -> Dict[str, str]:
    """Generate an email draft tailored to the record's risk tier."""
    advisor = get_advisor_info()
    tier = RiskTier(record.risk_tier)
    if tier is RiskTier.RED:
        return generate_alert_email(record, advisor)
    if tier is RiskTier.YELLOW:
        return _attention_email(record, advisor)
    return _on_track_email(record, advisor)


def generate_alert_email(record: StudentRecord, advisor: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """High-risk alert for a mentor, listing risk factors and recommended actions."""
    advisor = advisor or get_advisor_info()
    issues = risk_issues(record.attendance_pct, record.score, record.fee_status)

    factors = []
    if LOW_ATTENDANCE in issues:
        factors.append(f"- Low attendance rate (below {_fmt(ATTENDANCE_THRESHOLD)}%)")
    if LOW_SCORE in issues:
        factors.append(f"- Poor academic performance (below {_fmt(SCORE_THRESHOLD)})")
    if UNPAID_FEE in issues:
        factors.append("- Outstanding fee payment")

    actions = [
        "- Schedule immediate one-on-one meeting with student",
        "- Contact parents/guardians to discuss concerns",
        "- Develop personalized intervention plan",
        "- Monitor progress closely over next 2 weeks",
    ]
    if UNPAID_FEE in issues:
        actions.append("- Follow up on fee payment immediately")

    subject = f"High Risk Student Alert: {record.display_name} - Immediate Attention Required"
    body = f"""Student Requires Immediate Attention

Name: {record.display_name}
Student ID: {record.enroll_id or record.identity}
Attendance: {_fmt(record.attendance_pct)}%
Test Score: {_fmt(record.score)}
Fee Status: {record.fee_status}
Risk Level: HIGH RISK

Risk Factors Identified:
{chr(10).join(factors)}

Recommended Actions:
{chr(10).join(actions)}

This alert was generated automatically by the Student Risk Tracker.
Time: {datetime.now().strftime('%Y-%m-%d %H:%M')}

{advisor['name']}
{advisor['email']}"""
    return {'subject': subject, 'body': body}


def _attention_email(record: StudentRecord, advisor: Dict[str, str]) -> Dict[str, str]:
    issues = risk_issues(record.attendance_pct, record.score, record.fee_status)
    concern = issues[0].lower() if issues else "recent progress"
    subject = f"Let's Talk About Your Progress, {record.display_name}"
    body = f"""Hi {record.display_name},

I'm reaching out because your record shows {concern}: attendance is at {_fmt(record.attendance_pct)}% and your latest score is {_fmt(record.score)}.

This is a good moment to get back on track before it affects your results. Please reach out to your instructor or the Student Success Office if something is getting in the way.

{advisor['name']}
{advisor['email']}"""
    return {'subject': subject, 'body': body}


def _on_track_email(record: StudentRecord, advisor: Dict[str, str]) -> Dict[str, str]:
    subject = f"Great Work, {record.display_name}! Keep It Up"
    body = f"""Hi {record.display_name},

Excellent work so far! You're maintaining {_fmt(record.attendance_pct)}% attendance with a score of {_fmt(record.score)}, and your fees are up to date.

Keep up the consistency.

{advisor['name']}
{advisor['email']}"""
    return {'subject': subject, 'body': body}


def generate_daily_summary(records: Iterable[StudentRecord]) -> Optional[Dict[str, str]]:
    """
    Daily risk summary for mentors.

    Returns:
        Subject/body draft, or None when there are no Red students
    """
    records = list(records)
    summary = summarize_tiers(records)
    red = [r for r in records if RiskTier(r.risk_tier) is RiskTier.RED]
    if not red:
        return None

    lines = [
        f"- {r.display_name} - Attendance: {_fmt(r.attendance_pct)}%, Score: {_fmt(r.score)}, Fee: {r.fee_status}"
        for r in red
    ]
    subject = f"Daily Risk Summary - {len(red)} High Risk Students"
    body = f"""Daily Student Risk Summary
Date: {datetime.now().strftime('%a %b %d %Y')}

Total Students: {summary['Total']}
High Risk: {summary[RiskTier.RED.value]}
Medium Risk: {summary[RiskTier.YELLOW.value]}
Low Risk: {summary[RiskTier.GREEN.value]}

High Risk Students Requiring Attention:
{chr(10).join(lines)}"""
    return {'subject': subject, 'body': body}
