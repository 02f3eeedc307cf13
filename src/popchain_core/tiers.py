"""Certificate tiers, indexed as the contract indexes them (0-3)."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from .exceptions import PopchainValidationError


@dataclass(frozen=True)
class CertificateTier:
    name: str
    level: str
    description: str
    image_file_name: str
    color: str

    def image_url(self, store_url: str, bucket: str = "tiers") -> str:
        """Public URL of the tier artwork in the store's public bucket."""
        return f"{store_url.rstrip('/')}/storage/v1/object/public/{bucket}/{self.image_file_name}"


CERTIFICATE_TIERS: Tuple[CertificateTier, ...] = (
    CertificateTier("PopPass", "Basic", "Proof of Attendance", "pop_pass.png", "purple"),
    CertificateTier("PopBadge", "Standard", "Activity / Side Quest", "pop_badge.png", "blue"),
    CertificateTier("PopMedal", "Premium", "Distinction / Speaker", "pop_medal.png", "red"),
    CertificateTier("PopTrophy", "Exclusive", "VIP / Sponsor", "pop_trophy.png", "yellow"),
)


def tier_by_name(name: str) -> Optional[CertificateTier]:
    return next((tier for tier in CERTIFICATE_TIERS if tier.name == name), None)


def tier_index(name: str) -> int:
    """On-chain tier index for a tier name."""
    for index, tier in enumerate(CERTIFICATE_TIERS):
        if tier.name == name:
            return index
    raise PopchainValidationError(f"Unknown certificate tier: {name!r}", field="tier")


def tier_by_index(index: int) -> CertificateTier:
    if not 0 <= index < len(CERTIFICATE_TIERS):
        raise PopchainValidationError(f"tier index must be 0-3, got {index}", field="tier_index")
    return CERTIFICATE_TIERS[index]
