"""
cardledger core: canonical encoding, identities, journal and replay.
"""
