"""
SocialVPN P2P Layer

Narrow interfaces to the overlay the engine runs on:
- DHT: certificate publication and retrieval
- Discovery: presence announcements from peers
- Connectivity: address registration and virtual IP mapping
"""
