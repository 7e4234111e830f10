"""
Discord alert notifier.

Posts a summary of newly alerted symbols to a Discord webhook after each
asset-class run. Best effort: a failed post is logged and never fails the
run.
"""

import logging
from typing import Dict, Optional, Sequence

import requests

from scanner.models import ScoredAsset

logger = logging.getLogger(__name__)

_CLASS_LABELS = {'crypto': 'Crypto', 'equities': 'Equities'}


class AlertNotifier:
    """Sends new-alert summaries to a Discord webhook."""

    def __init__(self, webhook_url: Optional[str] = None, max_symbols: int = 10):
        self.webhook_url = webhook_url or ''
        self.max_symbols = max_symbols

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def build_message(
        self,
        asset_class: str,
        assets: Sequence[ScoredAsset],
        stats: Optional[Dict] = None,
    ) -> str:
        """Format the Discord message body for the new alerts of one class."""
        label = _CLASS_LABELS.get(asset_class, asset_class.title())
        lines = [f"**{label} Scanner: {len(assets)} new alert(s)**"]

        if stats:
            # Keys follow ScanStats.to_dict()
            lines.append(
                f"Universe: {stats.get('listed', 0)} | "
                f"Scored: {stats.get('scored', 0)} | "
                f"New: {stats.get('new_alerts', 0)} | "
                f"Errors: {stats.get('errors', 0)}"
            )
        lines.append("")

        for asset in assets[:self.max_symbols]:
            risk = asset.risk
            lines.append(
                f"**{asset.symbol}** ${asset.indicators.current_price:,.4g} "
                f"| Score: {asset.score} ({asset.message}) "
                f"| RSI: {asset.indicators.rsi:.1f} "
                f"| Stop: {risk.stop_loss:,.4g} | Target: {risk.take_profit:,.4g} "
                f"| Size: {risk.position_size}"
            )

        remaining = len(assets) - self.max_symbols
        if remaining > 0:
            lines.append(f"_...and {remaining} more_")

        return '\n'.join(lines)

    def notify(
        self,
        asset_class: str,
        assets: Sequence[ScoredAsset],
        stats: Optional[Dict] = None,
    ) -> bool:
        """
        Post new alerts to Discord.

        Returns:
            True if a message was delivered
        """
        new_alerts = [a for a in assets if a.new_alert]
        if not new_alerts:
            logger.debug(f"No new {asset_class} alerts to send")
            return False
        if not self.enabled:
            logger.debug("No Discord webhook configured for scanner alerts")
            return False

        message = self.build_message(asset_class, new_alerts, stats)
        try:
            resp = requests.post(
                self.webhook_url,
                json={'content': message},
                timeout=10,
            )
        except requests.RequestException as e:
            logger.warning(f"Failed to send Discord alert: {e}")
            return False

        if resp.status_code in (200, 204):
            logger.info(f"Discord {asset_class} alert sent ({len(new_alerts)} symbols)")
            return True

        logger.warning(f"Discord send failed: {resp.status_code}")
        return False
