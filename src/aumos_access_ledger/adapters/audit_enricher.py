"""Audit event enrichment for aumos-access-ledger.

Derives the context an entry carries beyond what the caller supplied:
device, browser and operating system from the user agent, and the
compliance tags that follow from the event's category, jurisdiction,
resource and legal metadata.
"""

from dataclasses import replace

from aumos_access_ledger.core.entities import (
    AuditEvent,
    ComplianceStandard,
    ComplianceTag,
    EventCategory,
    LegalContext,
    NetworkContext,
)

_UNKNOWN = "UNKNOWN"

# Ordered (needle, label) rules; first match wins
_DEVICE_RULES: tuple[tuple[str, str], ...] = (
    ("tablet", "TABLET"),
    ("ipad", "TABLET"),
    ("mobile", "MOBILE"),
    ("iphone", "MOBILE"),
    ("android", "MOBILE"),
    ("desktop", "DESKTOP"),
    ("windows", "DESKTOP"),
    ("macintosh", "DESKTOP"),
    ("x11", "DESKTOP"),
    ("server", "SERVER"),
    ("curl", "SERVER"),
    ("python", "SERVER"),
)

_BROWSER_RULES: tuple[tuple[str, str], ...] = (
    ("edg", "EDGE"),
    ("opr", "OPERA"),
    ("opera", "OPERA"),
    ("firefox", "FIREFOX"),
    ("chrome", "CHROME"),
    ("safari", "SAFARI"),
)

_OS_RULES: tuple[tuple[str, str], ...] = (
    ("windows", "WINDOWS"),
    ("iphone", "IOS"),
    ("ipad", "IOS"),
    ("android", "ANDROID"),
    ("mac os", "MACOS"),
    ("linux", "LINUX"),
)

_PERSONAL_DATA_RESOURCE = "PERSONAL_DATA"


def _classify(user_agent: str | None, rules: tuple[tuple[str, str], ...]) -> str:
    if not user_agent:
        return _UNKNOWN
    lowered = user_agent.lower()
    for needle, label in rules:
        if needle in lowered:
            return label
    return _UNKNOWN


def detect_device(user_agent: str | None) -> str:
    return _classify(user_agent, _DEVICE_RULES)


def detect_browser(user_agent: str | None) -> str:
    return _classify(user_agent, _BROWSER_RULES)


def detect_os(user_agent: str | None) -> str:
    return _classify(user_agent, _OS_RULES)


class AuditEnricher:
    """Adds derived network context and automatic compliance tags to events.

    Args:
        default_jurisdiction: Jurisdiction assumed when the caller supplies none.
    """

    def __init__(self, default_jurisdiction: str = "RSA") -> None:
        self._default_jurisdiction = default_jurisdiction

    def enrich(self, event: AuditEvent, category: EventCategory) -> AuditEvent:
        """Return a copy of ``event`` with derived context and tags applied.

        Args:
            event: Validated input event.
            category: Category of the event's type.

        Returns:
            The enriched event. Caller-supplied tags are kept and never duplicated.
        """
        network = event.network
        network = NetworkContext(
            ip_address=network.ip_address,
            user_agent=network.user_agent,
            session_id=network.session_id,
            device_type=network.device_type or detect_device(network.user_agent),
            browser=network.browser or detect_browser(network.user_agent),
            operating_system=network.operating_system or detect_os(network.user_agent),
        )
        legal = event.legal
        if legal.jurisdiction is None:
            legal = replace(legal, jurisdiction=self._default_jurisdiction)
        tags = self.compliance_tags(event, category, legal)
        return replace(event, network=network, legal=legal, compliance_tags=tags)

    def compliance_tags(
        self, event: AuditEvent, category: EventCategory, legal: LegalContext
    ) -> tuple[ComplianceTag, ...]:
        """Merge caller tags with the tags implied by the event itself."""
        tags = list(event.compliance_tags)
        present = {tag.standard for tag in tags}

        implied: list[ComplianceStandard] = []
        if legal.jurisdiction == "RSA" and category in (EventCategory.LEGAL, EventCategory.SECURITY):
            implied.append(ComplianceStandard.POPIA)
        if category is EventCategory.LEGAL and event.resource_type == _PERSONAL_DATA_RESOURCE:
            implied.append(ComplianceStandard.GDPR)
        if category is EventCategory.LEGAL and legal.case_number:
            implied.append(ComplianceStandard.SOUTH_AFRICAN_COURT)

        for standard in implied:
            if standard not in present:
                tags.append(ComplianceTag.for_standard(standard))
                present.add(standard)
        return tuple(tags)
