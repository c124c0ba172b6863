"""
Donation records and aggregation.
"""

from .models import Campaign, Donation, DonationStatus, Donor, DonorLevel, Frequency, PaymentMethod
from .stats import (
    BucketTotals,
    DonationStats,
    ImpactMetrics,
    MonthlyTotal,
    apply_donation,
    apply_to_campaign,
    campaign_progress,
    donation_stats,
    donor_level,
    impact_metrics,
)

__all__ = [
    "Campaign",
    "Donation",
    "DonationStatus",
    "Donor",
    "DonorLevel",
    "Frequency",
    "PaymentMethod",
    "BucketTotals",
    "DonationStats",
    "ImpactMetrics",
    "MonthlyTotal",
    "apply_donation",
    "apply_to_campaign",
    "campaign_progress",
    "donation_stats",
    "donor_level",
    "impact_metrics",
]
