"""
ingestion package

On-chain data access: Solana RPC, Meteora DLMM binding, reference prices.
"""
