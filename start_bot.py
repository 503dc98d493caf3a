#!/usr/bin/env python3
"""
Safe startup script for the grid trader.

Runs pre-flight checks before handing over to ethgrid.main:
1. .env file present (credentials when trading live)
2. State directory writable
3. Paper or live mode made explicit, with confirmation for live runs
"""

import os
import sys
from pathlib import Path


def check_env_file(paper: bool):
    """Verify .env exists; live mode also needs a signing key."""
    env_file = Path('.env')

    if not env_file.exists():
        if paper:
            print("⚠️  No .env file, using defaults (paper trading)")
            return True
        print("❌ ERROR: .env file not found")
        print("\nLive trading needs at least:")
        print("  HL_PRIVATE_KEY=0x...")
        print("  GRID_PAPER_TRADING=false")
        return False

    if not paper and not os.getenv('HL_PRIVATE_KEY'):
        print("❌ ERROR: GRID_PAPER_TRADING=false but HL_PRIVATE_KEY is not set")
        return False

    print("✅ .env file present")
    return True


def check_state_directory():
    state_dir = Path(os.getenv('GRID_STATE_DIR', 'state'))
    state_dir.mkdir(parents=True, exist_ok=True)
    probe = state_dir / '.write_test'
    try:
        probe.write_text('ok')
        probe.unlink()
    except OSError as exc:
        print(f"❌ ERROR: state directory {state_dir} is not writable: {exc}")
        return False
    print(f"✅ State directory ready ({state_dir})")
    return True


def check_sr_source():
    if os.getenv('DUNE_API_KEY'):
        print("✅ Dune API key present (S/R from on-chain data)")
    elif float(os.getenv('GRID_BASE_PRICE', '0') or 0) > 0:
        print("✅ Fixed grid center from GRID_BASE_PRICE")
    else:
        print("⚠️  No DUNE_API_KEY: grid centers on the current price (+/-10%)")
    return True


def describe_mode(paper: bool):
    if paper:
        print("\n🟢 Mode: PAPER TRADING (simulated fills, no real funds)")
        print(f"   Virtual balances: {os.getenv('GRID_PAPER_INITIAL_ETH', '1.0')} ETH + "
              f"{os.getenv('GRID_PAPER_INITIAL_USDC', '1000')} USDC")
    else:
        base_url = os.getenv('HL_BASE_URL', 'https://api.hyperliquid.xyz')
        testnet = 'testnet' in base_url.lower()
        print(f"\n{'🟡' if testnet else '🔴'} Mode: LIVE on {'TESTNET' if testnet else 'MAINNET'}")
        print(f"   API: {base_url}")
        print(f"   Pair: {os.getenv('HL_SPOT_PAIR', 'UETH/USDC')}")
        if not testnet:
            print("   ⚠️  Real funds will be swapped at every triggered level")


def confirm_startup(auto_confirm: bool = False):
    from dotenv import load_dotenv
    load_dotenv()
    paper = os.getenv('GRID_PAPER_TRADING', 'true').lower() in {'1', 'true', 'yes', 'y'}

    print("\n" + "=" * 60)
    print("PRE-FLIGHT CHECKS")
    print("=" * 60)

    checks = [
        check_env_file(paper),
        check_state_directory(),
        check_sr_source(),
    ]
    if not all(checks):
        print("\n❌ Pre-flight checks FAILED")
        print("Fix errors above and try again")
        return False

    print("\n✅ All pre-flight checks passed!")
    describe_mode(paper)

    if auto_confirm or paper:
        print("\n✅ Starting grid trader...")
        return True

    print("\nBefore starting, confirm:")
    print("  □ Grid levels, spacing and amount per level are correct")
    print("  □ You have run this configuration in paper mode first")
    print("  □ You understand real money is at risk")

    response = input("\nType 'START' to continue: ").strip().upper()
    if response != 'START':
        print("❌ Startup cancelled")
        return False

    print("\n✅ Starting grid trader...")
    return True


def main():
    import argparse

    parser = argparse.ArgumentParser(description='ETH grid trader')
    parser.add_argument('--no-confirm', action='store_true',
                        help='Skip startup confirmation (for systemd/automated use)')
    args = parser.parse_args()

    try:
        if not confirm_startup(auto_confirm=args.no_confirm):
            sys.exit(1)

        import asyncio
        from ethgrid.main import main as bot_main
        asyncio.run(bot_main())

        print("\n\n✅ Grid trader stopped gracefully")

    except KeyboardInterrupt:
        print("\n\n⏹️  Shutdown requested (Ctrl+C)")
    except Exception as e:
        print(f"\n❌ Error: {e}")
        print("\nCheck ethgrid.log for details")
        sys.exit(1)


if __name__ == '__main__':
    main()
