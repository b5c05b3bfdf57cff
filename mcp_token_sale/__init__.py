"""
Token Sale Package Initialization

This package models a fixed-price token sale with a soft-cap contingency,
post-sale liquidity provisioning and multi-party vesting, and serves it over the
Model Context Protocol (MCP).

The package includes:
- Sale state machine (buy, close, claim/airdrop, liquidity unlock)
- Vesting engine with cliff/linear release schedules
- Liquidity bridge integrations (in-memory pool and JSON-RPC client)
- In-memory fungible ledgers for the token and the base currency
- Sale configuration management and validation
- Custom error handling
- MCP server implementation for easy integration
"""
