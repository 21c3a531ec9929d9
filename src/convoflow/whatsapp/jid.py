"""WhatsApp JID parsing.

JID flavours:
- PN (phone number): 558399999999@s.whatsapp.net
- LID (local id):    123456789@lid
- Group:             120363123456789@g.us
"""

import re
from dataclasses import dataclass
from typing import Literal

JidType = Literal["pn", "lid", "group", "unknown"]

PN_SUFFIX = "@s.whatsapp.net"
LID_SUFFIX = "@lid"
GROUP_SUFFIX = "@g.us"

MIN_PHONE_DIGITS = 8

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class JidInfo:
    raw: str
    type: JidType
    digits: str | None
    suffix: str


def parse_jid(jid: object) -> JidInfo | None:
    """Parse a JID into its type and phone digits (PN only)."""
    if not jid or not isinstance(jid, str):
        return None

    trimmed = jid.strip()
    if not trimmed:
        return None

    if trimmed.endswith(GROUP_SUFFIX):
        return JidInfo(raw=trimmed, type="group", digits=None, suffix=GROUP_SUFFIX)

    if trimmed.endswith(PN_SUFFIX):
        digits = _NON_DIGITS.sub("", trimmed[: -len(PN_SUFFIX)])
        return JidInfo(raw=trimmed, type="pn", digits=digits or None, suffix=PN_SUFFIX)

    # LID may carry a device suffix, e.g. 123@lid:7
    if LID_SUFFIX in trimmed:
        return JidInfo(raw=trimmed, type="lid", digits=None, suffix=LID_SUFFIX)

    return JidInfo(raw=trimmed, type="unknown", digits=None, suffix="")


def is_phone_number(info: JidInfo | None) -> bool:
    """True for PN JIDs with a usable number of digits."""
    return (
        info is not None
        and info.type == "pn"
        and info.digits is not None
        and len(info.digits) >= MIN_PHONE_DIGITS
    )


def is_group(jid: str | None) -> bool:
    return bool(jid) and jid.strip().endswith(GROUP_SUFFIX)


def is_lid(jid: str | None) -> bool:
    return bool(jid) and LID_SUFFIX in jid


def extract_phone_digits(jid: str | None) -> str | None:
    info = parse_jid(jid)
    if info is None or info.type != "pn":
        return None
    return info.digits


def canonical_jid(remote_jid: str | None, remote_jid_alt: str | None) -> str | None:
    """Pick the canonical thread JID: PN over LID, group as-is."""
    main = parse_jid(remote_jid)
    alt = parse_jid(remote_jid_alt)

    if main is not None and main.type == "pn":
        return main.raw
    if alt is not None and alt.type == "pn":
        return alt.raw
    if main is not None and main.type == "group":
        return main.raw
    if main is not None:
        return main.raw
    return alt.raw if alt is not None else None


def lid_placeholder(jid: str) -> str:
    """Contact key for senders only known by a LID: 'lid:<local part>'."""
    return "lid:" + jid.split("@", 1)[0]


def is_placeholder_address(value: str | None) -> bool:
    return bool(value) and value.startswith("lid:")
