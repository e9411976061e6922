"""
UniFi DPI application and category names (UniFi OS 3.x/4.x)
Used to label traffic points when the controller omits the display names
"""

CATEGORIES = {
    0: "Network Protocol",
    1: "Messaging",
    2: "Email",
    3: "Web",
    4: "File Transfer",
    5: "Video",
    6: "VoIP",
    7: "Remote Access",
    8: "Streaming",
    9: "Network Service",
    10: "Database",
    11: "Business",
    12: "Social Network",
    13: "Cloud/Infrastructure",
    14: "Productivity",
    15: "Security",
    16: "Update",
    17: "Media",
    18: "IoT",
    19: "Advertising",
    20: "Technology",
    24: "Gaming",
    34: "Finance",
    41: "Shopping",
}

# Application IDs are only unique within a category
CATEGORIZED_APPLICATIONS = {
    0: {  # Network Protocol
        21: "DNS",
        27: "ICMP",
        39: "NTP",
        41: "mDNS",
        70: "NetBIOS",
        107: "SSDP",
    },
    1: {  # Messaging
        2: "Telegram",
        153: "Signal",
        178: "iMessage",
    },
    3: {  # Web
        5: "HTTP",
        150: "iCloud Web",
    },
    4: {  # File Transfer / General Web
        10: "HTTPS",
        112: "Apple Services",
        130: "Amazon",
        193: "Cloudflare",
        248: "iCloud",
    },
    5: {  # Video
        94: "Google Video",
        95: "YouTube",
    },
    13: {  # Cloud/Infrastructure
        15: "SSH",
        17: "QUIC",
        84: "SSL/TLS",
        110: "Netflix",
        120: "WhatsApp",
        126: "Steam",
        190: "Amazon IVS / Twitch",
        209: "Discord",
        222: "AWS",
        234: "Akamai",
        246: "Zoom",
    },
    17: {  # Media
        32: "RTSP",
        62: "Slack",
        127: "Vimeo",
        140: "Hulu",
        227: "TikTok",
        228: "Disney+",
        290: "Microsoft Teams",
        294: "Webex",
    },
    18: {  # IoT
        63: "MQTT",
        106: "CoAP",
    },
    20: {  # Technology
        172: "Apple",
        185: "IoT / Smart Home",
        186: "mDNS",
        194: "Tailscale",
        195: "GitHub",
        199: "Ubiquiti",
    },
    24: {  # Gaming
        3: "Xbox",
        8: "PlayStation",
        49: "Steam Gaming",
        158: "Microsoft Gaming",
    },
}


def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def get_category_name(category_id):
    """Category display name, or "Category <id>" when unknown"""
    name = CATEGORIES.get(_as_int(category_id))
    return name or f"Category {category_id}"


def get_application_name(app_id, category_id=None):
    """Application display name, or "App <id>" when unknown"""
    apps = CATEGORIZED_APPLICATIONS.get(_as_int(category_id))
    if apps:
        name = apps.get(_as_int(app_id))
        if name:
            return name
    return f"App {app_id}"
