"""Name-based lead -> ad attribution.

Leads carry the ad name (and sometimes the ad set name) the CRM captured,
never a Meta id, so they are matched to campaigns through the ad names seen
in the weekly snapshots of the same report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from adboard.models import Lead, WeeklyAdSnapshot

logger = logging.getLogger(__name__)


UNKNOWN_CAMPAIGN = "Unknown Campaign"
UNKNOWN_AD_SET = "Unknown Ad Set"
UNKNOWN_AD = "Unknown Ad"


@dataclass
class AttributionMaps:
    ad_to_campaign: Dict[str, str] = field(default_factory=dict)
    ad_to_ad_set: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_snapshots(cls, snapshots: Iterable[WeeklyAdSnapshot]) -> "AttributionMaps":
        """Ad name -> campaign / ad set name. Later snapshots win on conflicts."""
        maps = cls()
        for snapshot in snapshots:
            if not snapshot.ad_name:
                continue
            maps.ad_to_campaign[snapshot.ad_name] = snapshot.campaign_name or UNKNOWN_CAMPAIGN
            maps.ad_to_ad_set[snapshot.ad_name] = snapshot.ad_set_name or UNKNOWN_AD_SET
        return maps

    def resolve(self, lead: Lead) -> Optional[Tuple[str, str]]:
        """(campaign, ad set) for the lead, or None when its ad is unknown."""
        if not lead.ad_name or lead.ad_name not in self.ad_to_campaign:
            logger.debug("[AD_BOARD] No ad metadata for lead %s (ad name %r), skipping", lead.id, lead.ad_name)
            return None
        campaign = self.ad_to_campaign[lead.ad_name]
        ad_set = lead.ad_set_name or self.ad_to_ad_set.get(lead.ad_name) or UNKNOWN_AD_SET
        return campaign, ad_set
