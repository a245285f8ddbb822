"""
Entry point for running walletgate as a module.

Allows running the wallet console via:
    python -m walletgate
"""

from walletgate.console import main

if __name__ == "__main__":
    main()
