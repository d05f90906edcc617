"""
ShipLog — Repository subscription → delivery targets and prompt style.
"""

from shiplog.db.tables import RepoRecord
from shiplog.models.distribution import ChatTarget, DistributionTarget, EmailTarget, HostedTarget
from shiplog.models.notes import Audience, StyleConfig

DEFAULT_CUSTOMER_TONE = "friendly, clear, and concise"


def style_for(repo: RepoRecord) -> StyleConfig:
    config = repo.config
    return StyleConfig(
        product_name=(config and config.product_name) or repo.name,
        company_name=(config and config.company_name) or repo.owner,
        customer_tone=(config and config.customer_tone) or DEFAULT_CUSTOMER_TONE,
    )


def build_targets(repo: RepoRecord) -> list[DistributionTarget]:
    """
    Enabled chat channels, then enabled email recipients, then one hosted
    changelog entry per audience.
    """
    targets: list[DistributionTarget] = [
        ChatTarget(
            provider=channel.provider,
            webhook_url=channel.webhook_url,
            audience=Audience(channel.audience),
            name=channel.name,
        )
        for channel in repo.channels
        if channel.enabled
    ]
    targets.extend(
        EmailTarget(address=recipient.address, audience=Audience(recipient.audience))
        for recipient in repo.recipients
        if recipient.enabled
    )
    targets.extend(HostedTarget(audience=audience) for audience in Audience)
    return targets
