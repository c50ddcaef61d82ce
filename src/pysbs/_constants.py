"""Internal constants shared across the library."""

from __future__ import annotations

# ------------------------------------------------------------------
# SBS-1 / BaseStation wire format
# ------------------------------------------------------------------

MESSAGE_TAG = "MSG"
MIN_FIELD_COUNT = 22
DEFAULT_TCP_PORT = 30003

# Zero-based field offsets within a MSG line.
FIELD_TRANSMISSION_TYPE = 1
FIELD_HEX_IDENT = 4
FIELD_CALLSIGN = 10
FIELD_ALTITUDE = 11
FIELD_GROUND_SPEED = 12
FIELD_TRACK = 13
FIELD_LATITUDE = 14
FIELD_LONGITUDE = 15
FIELD_VERTICAL_RATE = 16
FIELD_SQUAWK = 17
FIELD_ALERT = 18
FIELD_EMERGENCY = 19
FIELD_SPI = 20
FIELD_ON_GROUND = 21

UNKNOWN = "Unknown"

# ------------------------------------------------------------------
# Airline lookup  (callsign prefix → operator)
# ------------------------------------------------------------------

AIRLINE_PREFIXES: dict[str, str] = {
    # Indonesian carriers, 3-letter ICAO designators
    "GIA": "Garuda Indonesia",
    "LNI": "Lion Air",
    "SJY": "Sriwijaya Air",
    "BTK": "Batik Air",
    "CTV": "Citilink",
    "AWQ": "Indonesia AirAsia",
    "PAS": "Pacific Air",
    "TRI": "Trigana Air",
    "KAL": "Kalstar Aviation",
    "SRW": "Sriwijaya Air",
    "WON": "Wings Air",
    "NAM": "Nam Air",
    "SUP": "Super Air Jet",
    "XAX": "Xpress Air",
    "SJV": "Sriwijaya Air",
    "MAS": "Malaysia Airlines",
    # Indonesian carriers, 2-character IATA designators
    "GA": "Garuda Indonesia",
    "JT": "Lion Air",
    "SJ": "Sriwijaya Air",
    "ID": "Batik Air",
    "QG": "Citilink",
    "QZ": "Indonesia AirAsia",
    "IW": "Wings Air",
    "IN": "Nam Air",
    "IU": "Super Air Jet",
    "XN": "Xpress Air",
    "KD": "Kalstar Aviation",
    "IL": "Trigana Air",
    "IP": "Pelita Air",
    "8B": "TransNusa",
    # Regional
    "MV": "Merpati Nusantara Airlines",
    "RI": "Mandala Airlines",
    "SG": "SpiceJet",
    # Cargo
    "PO": "Polar Air Cargo",
    "CV": "Cargolux",
    # International carriers common in the region
    "SQ": "Singapore Airlines",
    "MH": "Malaysia Airlines",
    "TG": "Thai Airways",
    "CX": "Cathay Pacific",
    "QF": "Qantas",
    "AK": "AirAsia Malaysia",
    "FD": "Thai AirAsia",
    "3K": "Jetstar Asia",
    "TR": "Scoot",
}


def airline_for_callsign(callsign: str | None) -> str:
    """Resolve an operator name from a callsign prefix.

    The 3-character ICAO designator is tried before the 2-character
    IATA one. Returns ``"Unknown"`` when nothing matches.
    """
    if not callsign:
        return UNKNOWN
    upper = callsign.strip().upper()
    for length in (3, 2):
        name = AIRLINE_PREFIXES.get(upper[:length])
        if name is not None and len(upper) >= length:
            return name
    return UNKNOWN


# ------------------------------------------------------------------
# ICAO 24-bit address block allocations  (start, end, state)
# ------------------------------------------------------------------

ICAO_ADDRESS_BLOCKS: tuple[tuple[int, int, str], ...] = (
    (0x06A000, 0x06A3FF, "Qatar"),
    (0x300000, 0x33FFFF, "Italy"),
    (0x340000, 0x37FFFF, "Spain"),
    (0x380000, 0x3BFFFF, "France"),
    (0x3C0000, 0x3FFFFF, "Germany"),
    (0x400000, 0x43FFFF, "United Kingdom"),
    (0x480000, 0x487FFF, "Netherlands"),
    (0x4B0000, 0x4B7FFF, "Switzerland"),
    (0x4B8000, 0x4BFFFF, "Turkey"),
    (0x710000, 0x717FFF, "Saudi Arabia"),
    (0x718000, 0x71FFFF, "South Korea"),
    (0x750000, 0x757FFF, "Malaysia"),
    (0x758000, 0x75FFFF, "Philippines"),
    (0x768000, 0x76FFFF, "Singapore"),
    (0x780000, 0x7BFFFF, "China"),
    (0x7C0000, 0x7FFFFF, "Australia"),
    (0x800000, 0x83FFFF, "India"),
    (0x840000, 0x87FFFF, "Japan"),
    (0x880000, 0x887FFF, "Thailand"),
    (0x888000, 0x88FFFF, "Viet Nam"),
    (0x896000, 0x896FFF, "United Arab Emirates"),
    (0x899000, 0x8993FF, "Taiwan"),
    (0x8A0000, 0x8AFFFF, "Indonesia"),
    (0xA00000, 0xAFFFFF, "United States"),
    (0xC00000, 0xC3FFFF, "Canada"),
    (0xC80000, 0xC87FFF, "New Zealand"),
    (0xE40000, 0xE7FFFF, "Brazil"),
)


def country_for_icao(hex_ident: str | None) -> str:
    """Resolve the registering state from an ICAO 24-bit address."""
    if not hex_ident:
        return UNKNOWN
    try:
        address = int(hex_ident, 16)
    except ValueError:
        return UNKNOWN
    for start, end, state in ICAO_ADDRESS_BLOCKS:
        if start <= address <= end:
            return state
    return UNKNOWN
