from __future__ import annotations

CCNA_DOMAINS = [
    {
        "id": 1,
        "title": "Domain 1",
        "subtitle": "Network Fundamentals",
        "description": "Routers, switches, cabling, TCP/UDP, IPv4/IPv6.",
        "icon": "🌐",
    },
    {
        "id": 2,
        "title": "Domain 2",
        "subtitle": "Network Access",
        "description": "VLANs, STP, EtherChannel, Wireless architecture.",
        "icon": "🔌",
    },
    {
        "id": 3,
        "title": "Domain 3",
        "subtitle": "IP Connectivity",
        "description": "Routing tables, OSPFv2, Static routing.",
        "icon": "🛣️",
    },
    {
        "id": 4,
        "title": "Domain 4",
        "subtitle": "IP Services",
        "description": "NAT, NTP, DHCP, DNS, SNMP, QoS.",
        "icon": "🛠️",
    },
    {
        "id": 5,
        "title": "Domain 5",
        "subtitle": "Security Fundamentals",
        "description": "Threats, VPNs, ACLs, Port Security, WPA3.",
        "icon": "🛡️",
    },
    {
        "id": 6,
        "title": "Domain 6",
        "subtitle": "Automation & Programmability",
        "description": "REST APIs, Puppet, Chef, SDN, JSON.",
        "icon": "🤖",
    },
]
