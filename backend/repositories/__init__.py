from .campaigns import CampaignRepository

__all__ = ["CampaignRepository"]
