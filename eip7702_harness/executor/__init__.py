"""
Chain-facing collaborators: nonce oracle, code reader and type-4 sender.
"""
