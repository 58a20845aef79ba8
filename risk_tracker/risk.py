"""Risk classification: attendance, score and fee rules mapped to a risk tier."""

from typing import Dict, Iterable, List

from risk_tracker.models import RiskTier, StudentRecord

ATTENDANCE_THRESHOLD = 75.0
SCORE_THRESHOLD = 40.0
UNPAID_FEE_VALUES = ('unpaid', '0')

LOW_ATTENDANCE = 'Low Attendance'
LOW_SCORE = 'Low Score'
UNPAID_FEE = 'Unpaid Fee'


def is_fee_unpaid(fee_status: str) -> bool:
    """Fee counts as unpaid when it reads 'unpaid' or '0', ignoring case."""
    return str(fee_status or '').strip().lower() in UNPAID_FEE_VALUES


def risk_issues(attendance_pct: float, score: float, fee_status: str) -> List[str]:
    """
    List the risk issues present for a student.

    Args:
        attendance_pct: Attendance percentage (not clamped)
        score: Test score
        fee_status: Free-text fee status

    Returns:
        Issue labels in a fixed order: attendance, score, fee
    """
    issues = []
    if attendance_pct < ATTENDANCE_THRESHOLD:
        issues.append(LOW_ATTENDANCE)
    if score < SCORE_THRESHOLD:
        issues.append(LOW_SCORE)
    if is_fee_unpaid(fee_status):
        issues.append(UNPAID_FEE)
    return issues


def classify(attendance_pct: float, score: float, fee_status: str) -> RiskTier:
    """
    Classify a student into Green/Yellow/Red.

    An unpaid fee alone is enough for Red; otherwise two or more issues are
    Red, a single issue is Yellow and no issues is Green. Always computed
    from the three inputs, never from a previously stored tier.

    Args:
        attendance_pct: Attendance percentage
        score: Test score
        fee_status: Free-text fee status

    Returns:
        RiskTier
    """
    issues = risk_issues(attendance_pct, score, fee_status)
    if UNPAID_FEE in issues or len(issues) > 1:
        return RiskTier.RED
    if len(issues) == 1:
        return RiskTier.YELLOW
    return RiskTier.GREEN


def classify_record(record: StudentRecord) -> RiskTier:
    return classify(record.attendance_pct, record.score, record.fee_status)


def get_risk_color(tier: RiskTier) -> str:
    """Hex color used when rendering a tier."""
    colors = {
        RiskTier.GREEN: '#10b981',
        RiskTier.YELLOW: '#f59e0b',
        RiskTier.RED: '#ef4444',
    }
    return colors.get(RiskTier(tier), '#6b7280')


def summarize_tiers(records: Iterable[StudentRecord]) -> Dict[str, int]:
    """Count records per tier, plus a 'Total' entry."""
    summary = {tier.value: 0 for tier in RiskTier}
    total = 0
    for record in records:
        summary[RiskTier(record.risk_tier).value] += 1
        total += 1
    summary['Total'] = total
    return summary
