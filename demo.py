#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: The Raffle Lending Ledger Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Pools and Deposits  - Pools, custody transfers, raffle tickets
  4-6:  Borrowing           - Collateral, utilization, rejections, interest
  7-8:  Repayment           - Interest first, protocol fee, collateral release
  9-10: The Raffle          - Weighted draw, audit trail and state hash

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import sys

from raffle_ledger import (
    LendingService, InMemoryTransferService, SequenceRandomSource,
    LedgerError, LEDGER_ACCOUNT, RAFFLE_DURATION, DEFAULT_TOKEN_UNIT,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    unit: int = DEFAULT_TOKEN_UNIT

    alice_usdc: int = 700
    bob_usdc: int = 300
    carol_eth: int = 2_000

    borrow_usdc: int = 500
    collateral_eth: int = 750

    # Recorded random value for the draw (alice: 0..699, bob: 700..999)
    draw_value: int = 750


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def tokens(amount: int) -> str:
    whole, frac = divmod(amount, CONFIG.unit)
    return f"{whole}" if frac == 0 else f"{whole}.{frac:018d}".rstrip("0")


# ============================================================================
# PHASE 1: POOLS AND DEPOSITS
# ============================================================================

def step_01_create_pools():
    step_header(1, "Creating Pools",
        "Each asset has one pool with a collateral factor and a borrow rate.")

    transfers = InMemoryTransferService()
    service = LendingService(
        transfers=transfers,
        random_source=SequenceRandomSource([CONFIG.draw_value]),
        initial_time=CONFIG.start_time,
        verbose=True,
    )
    print('>>> service.create_pool("USDC", collateral_factor=15000, borrow_rate=500)')
    service.create_pool("USDC", collateral_factor=15000, borrow_rate=500)
    print('>>> service.create_pool("ETH", collateral_factor=15000, borrow_rate=300)')
    service.create_pool("ETH", collateral_factor=15000, borrow_rate=300)

    section_header("Key Insight")
    print("""
    Rates are basis points: 15000 = 150% collateral, 500 = 5% a year.
    The ledger holds no tokens itself; they sit on the transfer service
    under the custody account.
    """)
    return service, transfers


def step_02_first_deposit(service, transfers):
    step_header(2, "Depositing",
        "Deposits move tokens into custody and earn raffle tickets.")

    u = CONFIG.unit
    for account, qty in (("alice", CONFIG.alice_usdc), ("bob", CONFIG.bob_usdc)):
        transfers.mint(account, "USDC", qty * u)
        transfers.approve(account, "USDC", qty * u)

    print(">>> service.start_new_raffle(number_of_winners=1)")
    raffle_id = service.start_new_raffle(1)

    print(f'>>> service.deposit("alice", "USDC", {CONFIG.alice_usdc} * unit)')
    alice_tickets = service.deposit("alice", "USDC", CONFIG.alice_usdc * u)
    print(f'>>> service.deposit("bob", "USDC", {CONFIG.bob_usdc} * unit)')
    bob_tickets = service.deposit("bob", "USDC", CONFIG.bob_usdc * u)

    section_header("Tickets")
    print(f"alice earned {alice_tickets}, bob earned {bob_tickets}")
    print(f"Custody USDC: {tokens(transfers.balance_of(LEDGER_ACCOUNT, 'USDC'))}")
    return raffle_id


def step_03_ticket_formula():
    step_header(3, "The Ticket Formula",
        "tickets = amount * (days_held + 1) // token_unit")

    u = CONFIG.unit
    for days in (0, 1, 6):
        tickets = LendingService.calculate_raffle_tickets(1000 * u, days)
        print(f"1000 tokens held {days} full days -> {tickets} tickets")


# ============================================================================
# PHASE 2: BORROWING
# ============================================================================

def step_04_borrow(service, transfers):
    step_header(4, "Borrowing",
        "Borrowers post collateral in another pool's asset.")

    u = CONFIG.unit
    transfers.mint("carol", "ETH", CONFIG.carol_eth * u)
    transfers.approve("carol", "ETH", CONFIG.carol_eth * u)

    print(f'>>> service.borrow("carol", "USDC", {CONFIG.borrow_usdc} * unit, '
          f'"ETH", {CONFIG.collateral_eth} * unit)')
    service.borrow("carol", "USDC", CONFIG.borrow_usdc * u, "ETH", CONFIG.collateral_eth * u)

    pool = service.get_pool("USDC")
    section_header("Pool")
    print(f"Total deposits: {tokens(pool.total_deposits)}")
    print(f"Total borrows:  {tokens(pool.total_borrows)}")
    print(f"Utilization:    {pool.utilization_rate} bps")


def step_05_rejections(service):
    step_header(5, "Rejections",
        "Every failed precondition raises a specific error and changes nothing.")

    u = CONFIG.unit
    before = service.store.state_hash()
    for description, call in (
        ("under-collateralized", lambda: service.borrow("carol", "USDC", 100 * u, "ETH", 10 * u)),
        ("more than free liquidity", lambda: service.withdraw("alice", "USDC", 700 * u)),
        ("second open raffle", lambda: service.start_new_raffle(1)),
    ):
        try:
            call()
        except LedgerError as e:
            print(f"{description}: {type(e).__name__}")
    print(f"\nState unchanged: {service.store.state_hash() == before}")


def step_06_interest(service):
    step_header(6, "Interest",
        "Simple interest on outstanding principal since the last borrow change.")

    print(">>> service.advance_time(current_time + 365 days)")
    service.advance_time(service.current_time + timedelta(days=365))
    info = service.get_user_borrow_info("carol", "USDC")
    print(f"Principal: {tokens(info.amount)}")
    print(f"Interest:  {tokens(info.interest_accrued)}")
    print(f"Total:     {tokens(info.total_debt)}")


# ============================================================================
# PHASE 3: REPAYMENT
# ============================================================================

def step_07_partial_repay(service, transfers):
    step_header(7, "Partial Repayment",
        "Interest is paid first; collateral follows retired principal.")

    u = CONFIG.unit
    transfers.approve("carol", "USDC", CONFIG.borrow_usdc * u)
    print('>>> service.repay("carol", "USDC", 225 * unit)')
    breakdown = service.repay("carol", "USDC", 225 * u)
    print(f"Interest paid:       {tokens(breakdown.interest)}")
    print(f"Protocol fee:        {tokens(breakdown.protocol_fee)}  (to the raffle)")
    print(f"Principal retired:   {tokens(breakdown.principal_repaid)}")
    print(f"Collateral released: {tokens(breakdown.collateral_released)} ETH")


def step_08_full_repay(service, transfers):
    step_header(8, "Full Repayment",
        "Retiring all principal releases the remaining collateral.")

    u = CONFIG.unit
    transfers.mint("carol", "USDC", 100 * u)
    transfers.approve("carol", "USDC", 400 * u)
    debt = service.get_user_borrow_info("carol", "USDC").total_debt
    print(f'>>> service.repay("carol", "USDC", {tokens(debt)} * unit)')
    service.repay("carol", "USDC", debt)
    print(f"carol ETH back: {tokens(transfers.balance_of('carol', 'ETH'))}")


# ============================================================================
# PHASE 4: THE RAFFLE
# ============================================================================

def step_09_draw(service, raffle_id):
    step_header(9, "Drawing the Raffle",
        "Winners are picked by cumulative ticket weight.")

    info = service.get_raffle_info(raffle_id)
    print(f"Participants: {service.get_participants(raffle_id)}")
    print(f"Tickets:      {info.total_tickets}")
    print(f"Reward pool:  {tokens(info.total_reward_pool)}")
    print(f"Ends at:      {info.end_time}")

    if service.current_time < info.end_time:
        service.advance_time(info.end_time)
    print(f"\n>>> service.draw_raffle({raffle_id})   # recorded r = {CONFIG.draw_value}")
    winners, reward = service.draw_raffle(raffle_id)
    print(f"Winners: {winners}, reward each: {tokens(reward)}")


def step_10_audit(service):
    step_header(10, "Audit Trail",
        "Every committed operation is logged; state hashes prove determinism.")

    for record in service.operation_log:
        print(f"  {record!r}")
    print(f"\nState hash: {service.store.state_hash()}")
    print(f"Next raffle may start: {service.get_raffle_info(service.current_raffle_id).drawn}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       RAFFLE LENDING LEDGER - INTERACTIVE TUTORIAL")
    print("=" * 70)
    print(f"\nRaffles run for {RAFFLE_DURATION.days} days.")
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    service, transfers = step_01_create_pools()
    wait_for_enter()
    raffle_id = step_02_first_deposit(service, transfers)
    wait_for_enter()
    step_03_ticket_formula()
    wait_for_enter()

    step_04_borrow(service, transfers)
    wait_for_enter()
    step_05_rejections(service)
    wait_for_enter()
    step_06_interest(service)
    wait_for_enter()

    step_07_partial_repay(service, transfers)
    wait_for_enter()
    step_08_full_repay(service, transfers)
    wait_for_enter()

    step_09_draw(service, raffle_id)
    wait_for_enter()
    step_10_audit(service)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See raffle_ledger/*.py module docstrings for the formulas
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
