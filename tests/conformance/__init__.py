"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the NFT ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. supply.py - Dense token ids and total supply
2. ownership_consistency.py - TokenStore and OwnerIndex agreement
3. atomicity.py - Failed operations leave state unchanged
4. listing_rules.py - Listing and delisting preconditions

These tests use hypothesis for property-based testing.
"""
