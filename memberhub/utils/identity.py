"""Best-effort client identity. Every helper returns a placeholder instead of raising."""
import ipaddress
import re
from typing import NamedTuple

import requests
from flask import current_app

UNKNOWN_IP = "unknown"
UNKNOWN_AGENT = "?"
LOCATION_UNAVAILABLE = "Location unavailable"
LOCAL_NETWORK = "Local network"


class Identity(NamedTuple):
    ip_address: str
    user_agent: str
    device: str
    browser: str
    location: str


def is_valid_ip(ip):
    try:
        ipaddress.ip_address(ip)
        return True
    except ValueError:
        return False


def get_client_ip(req):
    forwarded = req.headers.get("X-Forwarded-For", "")
    for candidate in (p.strip() for p in forwarded.split(",")):
        if candidate and is_valid_ip(candidate):
            return candidate
    ip = req.remote_addr or ""
    return ip if is_valid_ip(ip) else UNKNOWN_IP


def get_user_agent(req):
    return req.headers.get("User-Agent", UNKNOWN_AGENT) or UNKNOWN_AGENT


def get_device_info(user_agent):
    ua = user_agent or ""
    device = "Desktop"
    if re.search(r"Mobile|Android|iPhone|iPad", ua):
        device = "Tablet" if "iPad" in ua else "Mobile"

    # order matters: Edge and Opera UAs also say Chrome, Chrome UAs also say Safari
    if "Edg" in ua:
        browser = "Edge"
    elif "OPR" in ua or "Opera" in ua:
        browser = "Opera"
    elif "Chrome" in ua:
        browser = "Chrome"
    elif "Firefox" in ua:
        browser = "Firefox"
    elif "Safari" in ua:
        browser = "Safari"
    else:
        browser = "Unknown"
    return device, browser


def get_location_from_ip(ip):
    if not is_valid_ip(ip):
        return LOCATION_UNAVAILABLE
    addr = ipaddress.ip_address(ip)
    if addr.is_private or addr.is_loopback:
        return LOCAL_NETWORK
    if not current_app.config.get("IP_LOOKUP_ENABLED", False):
        return LOCATION_UNAVAILABLE
    url = current_app.config["IP_LOOKUP_URL"].format(ip=ip)
    try:
        resp = requests.get(url, timeout=current_app.config.get("IP_LOOKUP_TIMEOUT", 3))
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        current_app.logger.debug(f"IP lookup failed for {ip}: {e}")
        return LOCATION_UNAVAILABLE
    city, country = data.get("city"), data.get("country_name")
    if city and country:
        return f"{city}, {country}"
    return country or LOCATION_UNAVAILABLE


def identify(req):
    ip = get_client_ip(req)
    ua = get_user_agent(req)
    device, browser = get_device_info(ua)
    return Identity(ip, ua, device, browser, get_location_from_ip(ip))


def admin_identity():
    """Identity stamped on log entries for actions taken from the admin panel."""
    return Identity("admin-action", "admin-panel", "Desktop", "Unknown", LOCATION_UNAVAILABLE)
