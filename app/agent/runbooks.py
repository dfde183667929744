"""
Internal runbooks: suggested step outlines and diagram specs for common issues.

These are hints for the model to verify with tools. They are added to the
prompt, never copied into answers.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RunbookHint:
    issue: str
    suggested_steps: tuple[str, ...]
    diagram_spec: str
    os: tuple[str, ...]
    estimated_minutes: int


COMMON_RUNBOOKS: dict[str, RunbookHint] = {
    hint.issue: hint
    for hint in (
        RunbookHint(
            issue="Windows 11 Wi-Fi won't connect",
            suggested_steps=(
                "Check Wi-Fi adapter status in Device Manager",
                "Run Windows Network Troubleshooter",
                "Reset network settings with netsh commands",
                "Check router/modem connectivity",
                "Update or rollback Wi-Fi drivers",
            ),
            diagram_spec="Wi-Fi Adapter -> Windows Network Stack -> Router -> Internet",
            os=("Windows",),
            estimated_minutes=15,
        ),
        RunbookHint(
            issue="Printer offline",
            suggested_steps=(
                "Check printer power and USB/network connections",
                "Verify printer is set as default",
                "Clear print queue and restart spooler service",
                "Check printer status in system settings",
                "Reinstall printer drivers if necessary",
            ),
            diagram_spec="Computer -> USB/Network -> Printer -> Power Supply",
            os=("Windows", "macOS"),
            estimated_minutes=10,
        ),
        RunbookHint(
            issue="Chrome hijacked by extension",
            suggested_steps=(
                "Open Chrome with extensions disabled",
                "Review and remove suspicious extensions",
                "Reset Chrome settings to default",
                "Scan for malware",
                "Check browser homepage and search engine settings",
            ),
            diagram_spec="Chrome Browser -> Extensions -> Malicious Code -> System",
            os=("Windows", "macOS", "Linux"),
            estimated_minutes=20,
        ),
        RunbookHint(
            issue="Clear DNS cache",
            suggested_steps=(
                "Open Command Prompt/Terminal as administrator",
                "Run DNS flush command (ipconfig /flushdns or sudo dscacheutil -flushcache)",
                "Restart DNS client service",
                "Test with nslookup or ping",
                "Restart network adapter if issues persist",
            ),
            diagram_spec="Computer -> DNS Cache -> DNS Server -> Internet",
            os=("Windows", "macOS"),
            estimated_minutes=5,
        ),
        RunbookHint(
            issue="Android Bluetooth not pairing",
            suggested_steps=(
                "Toggle Bluetooth off and on",
                "Forget existing Bluetooth devices",
                "Clear Bluetooth cache in app settings",
                "Check device compatibility and distance",
                "Reset network settings if needed",
            ),
            diagram_spec="Android Device -> Bluetooth Radio -> Target Device -> Pairing",
            os=("Android",),
            estimated_minutes=8,
        ),
    )
}


def find_runbook_hint(issue: str) -> RunbookHint | None:
    """Runbook whose title contains the issue text or is contained in it (case-insensitive)."""
    needle = (issue or "").strip().lower()
    if not needle:
        return None
    for key, hint in COMMON_RUNBOOKS.items():
        k = key.lower()
        if k in needle or needle in k:
            return hint
    return None


def runbooks_for_os(os_name: str) -> list[RunbookHint]:
    return [hint for hint in COMMON_RUNBOOKS.values() if os_name in hint.os]


def format_hint(hint: RunbookHint) -> str:
    steps = "\n".join(f"- {s}" for s in hint.suggested_steps)
    return (
        f"Internal runbook hint for '{hint.issue}' (unverified; confirm with tools before using):\n"
        f"{steps}\nSuggested diagram: {hint.diagram_spec}\nTypical time: ~{hint.estimated_minutes} min"
    )
