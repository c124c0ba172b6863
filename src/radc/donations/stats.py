"""
Donation aggregation.

Pure functions that turn donation records into donor tiers, campaign
progress, time-bucketed statistics and impact metrics. Only completed
donations are counted, at their net amount (amount minus fees).
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Tuple

from pydantic import BaseModel

from .models import Campaign, Donation, DonationStatus, Donor, DonorLevel


# Lower bound of each tier, highest first
DONOR_LEVEL_THRESHOLDS: Tuple[Tuple[Decimal, DonorLevel], ...] = (
    (Decimal("10000"), DonorLevel.DIAMOND),
    (Decimal("5000"), DonorLevel.PLATINUM),
    (Decimal("1000"), DonorLevel.GOLD),
    (Decimal("500"), DonorLevel.SILVER),
)

# Estimated cost of helping one beneficiary
COST_PER_BENEFICIARY = Decimal("50")


class BucketTotals(BaseModel):
    amount: Decimal = Decimal("0")
    count: int = 0


class DonationStats(BaseModel):
    today: BucketTotals
    this_week: BucketTotals
    this_month: BucketTotals
    this_year: BucketTotals
    total: BucketTotals


class MonthlyTotal(BaseModel):
    month: str          # YYYY-MM
    amount: Decimal
    count: int


class ImpactMetrics(BaseModel):
    total_given: Decimal
    donation_count: int
    donor_count: int
    average_amount: Decimal
    funded_projects: int
    beneficiaries: int
    monthly: List[MonthlyTotal]


def donor_level(total: Decimal) -> DonorLevel:
    for threshold, level in DONOR_LEVEL_THRESHOLDS:
        if total >= threshold:
            return level
    return DonorLevel.BRONZE


def counted(donations: Iterable[Donation]) -> List[Donation]:
    return [d for d in donations if d.status is DonationStatus.COMPLETED]


def _local_to(moment: datetime, now: datetime) -> datetime:
    """Express a donation time in the same convention as the reference time."""
    if now.tzinfo is None:
        # Naive reference times are local wall-clock times
        return moment.astimezone().replace(tzinfo=None) if moment.tzinfo is not None else moment
    return moment.astimezone(now.tzinfo)


def apply_donation(donor: Donor, donation: Donation) -> Donor:
    """
    Donor totals after one more donation.

    The tier is recomputed from the new total.
    """
    total = donor.total_given + donation.amount
    return donor.model_copy(update={
        "total_given": total,
        "donation_count": donor.donation_count + 1,
        "level": donor_level(total),
        "last_donation_at": donation.donated_at,
    })


def apply_to_campaign(campaign: Campaign, donation: Donation) -> Campaign:
    return campaign.model_copy(update={
        "raised": campaign.raised + donation.amount,
        "donor_count": campaign.donor_count + 1,
    })


def campaign_progress(campaign: Campaign) -> Decimal:
    """Percentage of the goal raised, capped at 100."""
    percent = campaign.raised * 100 / campaign.goal
    return min(percent, Decimal("100")).quantize(Decimal("0.01"))


def donation_stats(donations: Iterable[Donation], now: datetime) -> DonationStats:
    """
    Sum donations into today / this week / this month / this year / total.

    "This week" is the seven days before the start of today, plus today.

    Args:
        donations: Donation records
        now: Reference time

    Returns:
        DonationStats with net amount and count per bucket
    """
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today - timedelta(days=7)
    month_start = today.replace(day=1)
    year_start = today.replace(month=1, day=1)

    buckets = {
        "today": BucketTotals(),
        "this_week": BucketTotals(),
        "this_month": BucketTotals(),
        "this_year": BucketTotals(),
        "total": BucketTotals(),
    }
    starts = (
        ("today", today),
        ("this_week", week_start),
        ("this_month", month_start),
        ("this_year", year_start),
    )

    for donation in counted(donations):
        amount = donation.net_amount
        donated_at = _local_to(donation.donated_at, now)
        hit = ["total"] + [name for name, start in starts if donated_at >= start]
        for name in hit:
            bucket = buckets[name]
            bucket.amount += amount
            bucket.count += 1

    return DonationStats(**buckets)


def _month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def _last_months(now: datetime, months: int) -> List[str]:
    keys = []
    year, month = now.year, now.month
    for _ in range(months):
        keys.append(_month_key(year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def impact_metrics(
    donations: Iterable[Donation],
    now: datetime,
    funded_projects: int = 0,
    months: int = 6,
) -> ImpactMetrics:
    """
    Headline impact figures and a monthly progression.

    Args:
        donations: Donation records
        now: Reference time
        funded_projects: Number of projects that received funding
        months: Length of the monthly progression, current month included

    Returns:
        ImpactMetrics
    """
    completed = counted(donations)
    total = sum((d.net_amount for d in completed), Decimal("0"))
    count = len(completed)
    average = (total / count).quantize(Decimal("0.01")) if count else Decimal("0")

    monthly = {key: MonthlyTotal(month=key, amount=Decimal("0"), count=0) for key in _last_months(now, months)}
    for donation in completed:
        donated_at = _local_to(donation.donated_at, now)
        key = _month_key(donated_at.year, donated_at.month)
        if key in monthly:
            monthly[key].amount += donation.net_amount
            monthly[key].count += 1

    return ImpactMetrics(
        total_given=total,
        donation_count=count,
        donor_count=len({d.donor_id for d in completed}),
        average_amount=average,
        funded_projects=funded_projects,
        beneficiaries=int(total // COST_PER_BENEFICIARY),
        monthly=list(monthly.values()),
    )
