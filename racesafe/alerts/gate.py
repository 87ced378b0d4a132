"""AlertGate — per-session-type, per-category alert switches.

Four session types x two alert categories = eight independent switches.
Combinations never configured default to enabled.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from racesafe.config import Settings
from racesafe.domain.alerts import Alert
from racesafe.domain.enums import AlertCategory, SessionType

logger = logging.getLogger(__name__)

GateKey = tuple[SessionType, AlertCategory]


class AlertGate:
    """Decides whether an alert may reach the dispatcher."""

    def __init__(self, switches: Mapping[GateKey, bool] | None = None) -> None:
        self._switches: dict[GateKey, bool] = {
            (st, cat): True for st in SessionType for cat in AlertCategory
        }
        if switches:
            self._switches.update(switches)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlertGate":
        switches = {
            (st, cat): bool(getattr(settings, f"alerts_{st.value}_{cat.value}"))
            for st in SessionType
            for cat in AlertCategory
        }
        gate = cls(switches)
        disabled = [f"{st.value}/{cat.value}" for (st, cat), on in switches.items() if not on]
        if disabled:
            logger.info("Alerts disabled for: %s", ", ".join(disabled))
        return gate

    def is_enabled(self, session_type: SessionType, category: AlertCategory) -> bool:
        return self._switches[(session_type, category)]

    def allows(self, alert: Alert) -> bool:
        return self.is_enabled(alert.session_type, alert.category)

    def set(self, session_type: SessionType, category: AlertCategory, enabled: bool) -> None:
        self._switches[(session_type, category)] = enabled

    def to_dict(self) -> dict[str, dict[str, bool]]:
        return {
            st.value: {cat.value: self._switches[(st, cat)] for cat in AlertCategory}
            for st in SessionType
        }
