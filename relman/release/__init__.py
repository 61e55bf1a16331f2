"""Release domain: artifact identities and naming conventions."""
