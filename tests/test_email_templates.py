"""
Tests for email draft generation.
"""

from risk_tracker.email_templates import (
    generate_alert_email,
    generate_daily_summary,
    generate_email_draft,
    get_advisor_info,
)


def test_advisor_info_from_environment(monkeypatch):
    monkeypatch.setenv("ADVISOR_NAME", "Dr. Okafor")
    monkeypatch.setenv("ADVISOR_EMAIL", "okafor@college.edu")

    advisor = get_advisor_info()

    assert advisor == {'name': "Dr. Okafor", 'email': "okafor@college.edu"}


def test_alert_email_lists_every_factor(record_factory):
    """Each failing condition shows up as a risk factor."""
    record = record_factory("s1", 50, 20, "unpaid", display_name="Jane Smith")

    email = generate_alert_email(record)

    assert email['subject'] == "High Risk Student Alert: Jane Smith - Immediate Attention Required"
    assert "Low attendance rate (below 75%)" in email['body']
    assert "Poor academic performance (below 40)" in email['body']
    assert "Outstanding fee payment" in email['body']
    assert "Follow up on fee payment immediately" in email['body']
    assert "Attendance: 50%" in email['body']


def test_alert_email_without_fee_issue(record_factory):
    record = record_factory("s2", 50, 20, "paid")

    email = generate_alert_email(record)

    assert "Outstanding fee payment" not in email['body']
    assert "Follow up on fee payment" not in email['body']
    assert "Schedule immediate one-on-one meeting" in email['body']


def test_email_draft_by_tier(record_factory):
    """The draft depends on the record's tier."""
    red = generate_email_draft(record_factory("r", 90, 90, "unpaid", display_name="Red"))
    yellow = generate_email_draft(record_factory("y", 60, 90, "paid", display_name="Yellow"))
    green = generate_email_draft(record_factory("g", 90, 90, "paid", display_name="Green"))

    assert red['subject'].startswith("High Risk Student Alert")
    assert yellow['subject'] == "Let's Talk About Your Progress, Yellow"
    assert "low attendance" in yellow['body']
    assert green['subject'] == "Great Work, Green! Keep It Up"


def test_daily_summary_counts(record_factory):
    records = [
        record_factory("a", 90, 90, "unpaid", display_name="Asha"),
        record_factory("b", 60, 90, "paid"),
        record_factory("c"),
        record_factory("d", 10, 10, "paid", display_name="Dev"),
    ]

    summary = generate_daily_summary(records)

    assert summary['subject'] == "Daily Risk Summary - 2 High Risk Students"
    assert "Total Students: 4" in summary['body']
    assert "High Risk: 2" in summary['body']
    assert "Medium Risk: 1" in summary['body']
    assert "Low Risk: 1" in summary['body']
    assert "- Asha - Attendance: 90%, Score: 90, Fee: unpaid" in summary['body']
    assert "- Dev -" in summary['body']


def test_daily_summary_without_red_students(record_factory):
    assert generate_daily_summary([record_factory("a"), record_factory("b", 60, 90)]) is None
    assert generate_daily_summary([]) is None
