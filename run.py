#!/usr/bin/env python3
"""
Simple launcher script for a single swap-and-deposit flow.
"""
import argparse
import sys
from swapdeposit.main import main
from swapdeposit.errors import SwapDepositError
import asyncio

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Swap an asset and deposit the proceeds into Jupiter Lend')
    parser.add_argument('input_mint', help='Mint of the asset to sell')
    parser.add_argument('output_mint', help='Mint of the asset to buy')
    parser.add_argument('amount', help='Input amount in base units (integer string)')
    parser.add_argument(
        '--deposit-asset',
        default=None,
        help='Asset to deposit (defaults to output_mint)'
    )
    parser.add_argument(
        '--slippage-bps',
        type=int,
        default=None,
        help='Slippage tolerance in basis points (capped at MAX_SLIPPAGE_BPS)'
    )
    parser.add_argument(
        '--output-decimals',
        type=int,
        default=0,
        help='Decimals of output_mint, used for log display only'
    )

    args = parser.parse_args()

    try:
        outcome = asyncio.run(main(
            args.input_mint,
            args.output_mint,
            args.amount,
            deposit_asset=args.deposit_asset,
            slippage_bps=args.slippage_bps,
            output_decimals=args.output_decimals
        ))
    except KeyboardInterrupt:
        print("\nStopped by user")
        sys.exit(130)
    except (SwapDepositError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    sys.exit(0 if outcome is not None and outcome.confirmed else 1)
