"""
SocialVPN - Trust and discovery for a social peer-to-peer VPN

Peers identify themselves with self-signed certificates, publish them
in a DHT under their fingerprint, and learn which fingerprints belong
to their friends from social-network backends.

Quick Start:
    $ socialvpn create-cert --uid alice@example.org --name "Alice"
    $ socialvpn run

Features:
    - Friend lists and fingerprints aggregated from pluggable backends
    - Certificate exchange through a DHT with integrity checks
    - Periodic reconciliation of local friends with the social graph
    - Pending / Allowed / Blocked access per friend device
    - HTTP management surface and JSON state snapshots
"""

__version__ = "0.3.0"
