"""Application services: membership, access policy, messages, reactions."""
