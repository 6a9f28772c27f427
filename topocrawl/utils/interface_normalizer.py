"""
TopoCrawl - Interface name normalization.

CDP and LLDP report the same port under many spellings (Gi0/1,
GigabitEthernet0/1, gi0/1, "sw1 Gi0/1"). Normalizing both ends of a link
lets the crawler match interface records seen from either side.
"""

import re
from typing import List, Optional, Tuple


class InterfaceNormalizer:
    # Alternatives are longest first so "ethernet" is never eaten by "eth".
    # (alternatives, long form, short form)
    INTERFACE_RULES: List[Tuple[str, str, str]] = [
        (r'ethernet|eth|et', 'Ethernet', 'Eth'),
        (r'gigabitethernet|gigabiteth|gigabit|gige|gi', 'GigabitEthernet', 'Gi'),
        (r'tengigabitethernet|tengigabit|tengige|tengig|te', 'TenGigabitEthernet', 'Te'),
        (r'twentyfivegigabitethernet|twentyfivegige|twentyfivegig|twe', 'TwentyFiveGigE', 'Twe'),
        (r'fortygigabitethernet|fortygige|fortygig|fo', 'FortyGigabitEthernet', 'Fo'),
        (r'hundredgigabitethernet|hundredgige|hundredgig|100gige|100gig|hun|hu', 'HundredGigabitEthernet', 'Hu'),
        (r'port-channel|port_channel|portchannel|po', 'Port-Channel', 'Po'),
        (r'vlan|vl', 'Vlan', 'Vl'),
        (r'loopback|lo', 'Loopback', 'Lo'),
        (r'fastethernet|fast|fa', 'FastEthernet', 'Fa'),
    ]

    # Management ports keep only their trailing port number, whatever the spelling
    MGMT_SYNONYMS = re.compile(r'^(?:oob_management|management|mgmt|oob|wan|ma)')
    TRAILING_NUMBERS = re.compile(r'\d+(?:/\d+)*(?:\.\d+)?$')
    HOST_PREFIXED = re.compile(r'^[a-zA-Z]+\d')
    PORT_CHANNEL = re.compile(r'^port[-_]channel', re.IGNORECASE)

    _compiled = [
        (re.compile(rf'^(?:{alts})(\d+(?:/\d+)*(?:\.\d+)?)'), long_name, short_name)
        for alts, long_name, short_name in INTERFACE_RULES
    ]

    @classmethod
    def _preprocess(cls, interface: str) -> str:
        """Strip hostnames glued to the port name and lowercase."""
        name = interface.strip()

        tokens = name.split()
        if len(tokens) > 1:
            # "GigabitEthernet 0/1" keeps its type; "sw1 Gi0/1" drops the host
            if tokens[-1][0].isdigit():
                name = tokens[-2] + tokens[-1]
            else:
                name = tokens[-1]

        # "port-channel" carries its own hyphen
        head, rest = '', name
        channel = cls.PORT_CHANNEL.match(name)
        if channel:
            head, rest = name[:channel.end()], name[channel.end():]

        if '-' in rest:
            tail = rest.split('-')[-1]
            if cls.HOST_PREFIXED.match(tail):
                head, rest = '', tail

        return f"{head}{rest}".lower().strip()

    @classmethod
    def normalize(cls, interface: Optional[str], use_short_name: bool = True) -> str:
        """
        Normalize an interface name to its canonical short or long form.

        Unknown names come back lowercased. normalize(normalize(x)) == normalize(x)
        for both forms.
        """
        if not interface or interface == "unknown":
            return "unknown"

        name = cls._preprocess(interface)
        if not name:
            return "unknown"

        if cls.MGMT_SYNONYMS.match(name):
            numbers = cls.TRAILING_NUMBERS.search(name)
            suffix = numbers.group(0) if numbers else ''
            return f"{'Ma' if use_short_name else 'Management'}{suffix}"

        for pattern, long_name, short_name in cls._compiled:
            match = pattern.match(name)
            if match:
                prefix = short_name if use_short_name else long_name
                return f"{prefix}{match.group(1)}{name[match.end():]}"

        return name

    @classmethod
    def normalize_pair(cls, local_int: Optional[str], remote_int: Optional[str],
                       use_short_name: bool = True) -> Tuple[str, str]:
        return (
            cls.normalize(local_int, use_short_name),
            cls.normalize(remote_int, use_short_name),
        )

    @staticmethod
    def detect_platform(platform: Optional[str]) -> str:
        """Coarse platform family from a CDP/LLDP platform string."""
        if not platform:
            return "UNKNOWN"

        lower_platform = platform.lower()
        if "cisco ios" in lower_platform:
            return "CISCO_IOS"
        if "nexus" in lower_platform or "nxos" in lower_platform or "nx-os" in lower_platform:
            return "CISCO_NXOS"
        if "arista" in lower_platform:
            return "ARISTA"
        return "UNKNOWN"
