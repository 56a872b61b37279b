import re

BLOCK_NUMBER_RE = re.compile(r"^[0-9]+$")
# six hex pairs separated by ':' or '-'
MAC_ADDRESS_RE = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$")


def validate_block_number(block_number) -> bool:
    if block_number is None:
        return False
    return bool(BLOCK_NUMBER_RE.match(str(block_number).strip()))


def normalize_mac_address(mac: str):
    """
    Canonical form: ``AA:BB:CC:DD:EE:FF``.
      1. strip whitespace, empty string means "no address"
      2. reject anything that is not six hex pairs
      3. uppercase, '-' separators become ':'
    """
    if mac is None:
        return None
    raw = mac.strip()
    if not raw:
        return None
    if not MAC_ADDRESS_RE.match(raw):
        return None
    return raw.upper().replace("-", ":")
