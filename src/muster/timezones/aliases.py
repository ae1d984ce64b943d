"""Common timezone codes users type, mapped to IANA identifiers.

Abbreviations are ambiguous in general; this table picks the reading most
people on an English-speaking server mean. Keys are upper-case.
"""

TIMEZONE_CODES: dict[str, str] = {
    # North America
    "HST": "Pacific/Honolulu",
    "HAST": "Pacific/Honolulu",
    "AKST": "America/Anchorage",
    "AKDT": "America/Anchorage",
    "PST": "America/Los_Angeles",
    "PDT": "America/Los_Angeles",
    "PT": "America/Los_Angeles",
    "PACIFIC": "America/Los_Angeles",
    "MST": "America/Denver",
    "MDT": "America/Denver",
    "MT": "America/Denver",
    "MOUNTAIN": "America/Denver",
    "ARIZONA": "America/Phoenix",
    "CST": "America/Chicago",
    "CDT": "America/Chicago",
    "CT": "America/Chicago",
    "CENTRAL": "America/Chicago",
    "EST": "America/New_York",
    "EDT": "America/New_York",
    "ET": "America/New_York",
    "EASTERN": "America/New_York",
    "AST": "America/Halifax",
    "ADT": "America/Halifax",
    "NST": "America/St_Johns",
    "NDT": "America/St_Johns",
    # South America
    "BRT": "America/Sao_Paulo",
    "ART": "America/Argentina/Buenos_Aires",
    # Europe / Africa
    "UTC": "UTC",
    "GMT": "Europe/London",
    "BST": "Europe/London",
    "UK": "Europe/London",
    "IST": "Europe/Dublin",
    "WET": "Europe/Lisbon",
    "WEST": "Europe/Lisbon",
    "CET": "Europe/Paris",
    "CEST": "Europe/Paris",
    "EET": "Europe/Athens",
    "EEST": "Europe/Athens",
    "MSK": "Europe/Moscow",
    "SAST": "Africa/Johannesburg",
    "WAT": "Africa/Lagos",
    "EAT": "Africa/Nairobi",
    # Asia
    "GST": "Asia/Dubai",
    "PKT": "Asia/Karachi",
    "INDIA": "Asia/Kolkata",
    "ICT": "Asia/Bangkok",
    "WIB": "Asia/Jakarta",
    "SGT": "Asia/Singapore",
    "HKT": "Asia/Hong_Kong",
    "PHT": "Asia/Manila",
    "CHINA": "Asia/Shanghai",
    "KST": "Asia/Seoul",
    "JST": "Asia/Tokyo",
    # Oceania
    "AWST": "Australia/Perth",
    "ACST": "Australia/Adelaide",
    "ACDT": "Australia/Adelaide",
    "AEST": "Australia/Sydney",
    "AEDT": "Australia/Sydney",
    "NZST": "Pacific/Auckland",
    "NZDT": "Pacific/Auckland",
}
