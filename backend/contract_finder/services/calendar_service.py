from datetime import datetime, timedelta
from icalendar import Calendar, Event, Alarm

REMINDER_DAYS = (30, 7, 1)


def _renewal_event(contract: dict) -> Event | None:
    try:
        day = datetime.strptime(contract.get("renewal_date") or "", "%Y-%m-%d").date()
    except ValueError:
        return None

    name = contract.get("name") or "Contract"
    event = Event()
    event.add("uid", f"{contract.get('id')}@contract-finder")
    event.add("summary", f"Renewal: {name}")
    event.add("dtstart", day)
    event.add("dtend", day + timedelta(days=1))

    description_parts = []
    if contract.get("parties"):
        description_parts.append(f"Parties: {', '.join(contract['parties'])}")
    if contract.get("amount") is not None:
        description_parts.append(f"Amount: {contract['amount']}")
    if contract.get("locator"):
        description_parts.append(f"Location: {contract['locator']}")
    if description_parts:
        event.add("description", "\n".join(description_parts))

    for days in REMINDER_DAYS:
        alarm = Alarm()
        alarm.add("action", "DISPLAY")
        alarm.add("trigger", -timedelta(days=days))
        alarm.add("description", f"{name} renews in {days} day{'s' if days != 1 else ''}")
        event.add_component(alarm)
    return event


def generate_renewal_ics(contracts: list[dict]) -> tuple[bytes, int]:
    """Build a calendar with one all-day event per contract renewal date.

    Returns the serialized calendar and the number of events in it; contracts
    without a valid renewal date are skipped.
    """
    cal = Calendar()
    cal.add("prodid", "-//ContractFinder//EN")
    cal.add("version", "2.0")

    count = 0
    for contract in contracts:
        event = _renewal_event(contract)
        if event is not None:
            cal.add_component(event)
            count += 1
    return cal.to_ical(), count
