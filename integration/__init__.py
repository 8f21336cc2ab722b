"""Integration package: round-trip probe run and its CSV log.

Run the probe from the repository root:
  python3 -m tools.meteora_probe --pool <address> --quoteMint <mint>
"""
