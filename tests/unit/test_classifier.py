"""Tests for TradeClassifier"""
import pytest

from dex_trade_parser.core.cache import ResultCache
from dex_trade_parser.core.constants import PUMP_FUN_CURVE_PROGRAM, SOL_MINT, USDC_MINT, DexIdentity
from dex_trade_parser.core.models import BuyTrade, SwapTrade, TokenAmount, make_trade
from dex_trade_parser.data_providers.jupiter_oracle import OracleTrade
from dex_trade_parser.parsing.classifier import (
    BATCH_OPTIONS,
    ClassifyOptions,
    TradeClassifier,
    apply_usd_price,
)
from dex_trade_parser.parsing.protocols import ClassifierStrategy, GenericParser

from conftest import (
    LAMPORTS, MINT_M, RECEIVER, WALLET,
    FakeFetcher, FakeOracle, FakePriceSource,
    build_tx, buy_tx, make_signature, pump_ix_data, pump_logs, swap_tx, wsol_trade_tx,
)
from dex_trade_parser.core.constants import PUMP_FUN_BUY_DISCRIMINATOR

SIG = make_signature(1)


def oracle_trade(sol=2.0, tokens=5_000.0):
    return OracleTrade(
        input_mint=SOL_MINT,
        output_mint=MINT_M,
        input_amount=sol,
        output_amount=tokens,
        input_decimals=9,
        output_decimals=6,
    )


def make_classifier(payloads=None, trades=None, **kwargs):
    fetcher = kwargs.pop("fetcher", None) or FakeFetcher(payloads or {})
    oracle = FakeOracle(trades or {})
    prices = FakePriceSource()
    classifier = TradeClassifier(fetcher=fetcher, oracle=oracle, price_source=prices, **kwargs)
    return classifier, fetcher, oracle, prices


@pytest.mark.asyncio
async def test_classify_buy_with_usd_price():
    classifier, fetcher, _, prices = make_classifier({SIG: buy_tx(SIG, sol=1.5, tokens=1_000_000.0)})

    trade = await classifier.classify(SIG)

    assert isinstance(trade, BuyTrade)
    assert trade.signature == SIG
    assert trade.holder_address == WALLET
    assert trade.dex == DexIdentity.RAYDIUM
    assert trade.source == "raydium_parser"
    assert trade.price == pytest.approx(1.5e-6)
    assert trade.price_usd == pytest.approx(1.5e-6 * 150.0)
    assert trade.fee == pytest.approx(5000 / 1e9)
    assert prices.calls == 1


@pytest.mark.asyncio
async def test_repeat_classification_hits_cache():
    classifier, fetcher, oracle, _ = make_classifier({SIG: buy_tx(SIG)})

    first = await classifier.classify(SIG)
    second = await classifier.classify(SIG)

    assert first is second
    assert fetcher.one_calls == [SIG]
    assert oracle.calls == [SIG]
    assert classifier.get_stats()["cache_hits"] == 1


@pytest.mark.asyncio
async def test_cache_can_be_bypassed():
    classifier, fetcher, _, _ = make_classifier({SIG: buy_tx(SIG)})
    options = ClassifyOptions(use_cache=False)

    await classifier.classify(SIG, options=options)
    await classifier.classify(SIG, options=options)

    assert len(fetcher.one_calls) == 2
    assert len(classifier.cache) == 0


@pytest.mark.asyncio
async def test_oracle_trade_wins_over_heuristics():
    classifier, _, _, _ = make_classifier({SIG: buy_tx(SIG)}, {SIG: oracle_trade()})

    trade = await classifier.classify(SIG)

    assert trade.source == "jupiter_api"
    assert trade.holder_address == WALLET
    assert trade.dex == DexIdentity.RAYDIUM
    assert trade.sold_token.amount == 2.0
    assert classifier.get_stats()["by_source"] == {"jupiter_api": 1}


@pytest.mark.asyncio
async def test_implausible_oracle_trade_is_ignored():
    classifier, _, _, _ = make_classifier({SIG: buy_tx(SIG)}, {SIG: oracle_trade(sol=0.001)})

    trade = await classifier.classify(SIG)

    assert trade.source == "raydium_parser"
    assert trade.sold_token.amount == pytest.approx(1.5)


@pytest.mark.asyncio
async def test_pump_parser_outranks_oracle():
    payload = buy_tx(
        SIG,
        program=PUMP_FUN_CURVE_PROGRAM,
        instructions=[{
            "programId": PUMP_FUN_CURVE_PROGRAM,
            "accounts": [WALLET],
            "data": pump_ix_data(PUMP_FUN_BUY_DISCRIMINATOR),
        }],
        logs=pump_logs("Buy"),
    )
    classifier, _, _, _ = make_classifier({SIG: payload}, {SIG: oracle_trade()})

    trade = await classifier.classify(SIG)

    assert trade.source == "pump_fun_parser"
    assert trade.dex == DexIdentity.PUMP_FUN
    assert trade.sold_token.amount == pytest.approx(1.5)


@pytest.mark.asyncio
async def test_oracle_only_when_transaction_missing():
    classifier, fetcher, _, _ = make_classifier({}, {SIG: oracle_trade()})

    trade = await classifier.classify(SIG)

    assert fetcher.one_calls == [SIG]
    assert trade.source == "jupiter_api"
    assert trade.holder_address is None
    assert trade.dex == DexIdentity.JUPITER
    assert trade.price_usd == pytest.approx(trade.price * 150.0)


@pytest.mark.asyncio
async def test_fetch_failure_gives_no_outcome():
    fetcher = FakeFetcher({SIG: buy_tx(SIG)}, fail_one={SIG})
    classifier, _, _, _ = make_classifier(fetcher=fetcher)

    assert await classifier.classify(SIG) is None
    assert classifier.get_stats()["not_found"] == 1


@pytest.mark.asyncio
async def test_oracle_failure_falls_back_to_transaction():
    fetcher = FakeFetcher({SIG: buy_tx(SIG)})
    classifier = TradeClassifier(fetcher=fetcher, oracle=FakeOracle(error=RuntimeError("down")))

    trade = await classifier.classify(SIG)

    assert trade.source == "raydium_parser"
    assert trade.price_usd is None


@pytest.mark.asyncio
async def test_supplied_transaction_is_not_fetched():
    classifier, fetcher, _, _ = make_classifier()

    trade = await classifier.classify(SIG, tx=buy_tx(SIG))

    assert isinstance(trade, BuyTrade)
    assert fetcher.total_calls == 0


@pytest.mark.asyncio
async def test_malformed_supplied_transaction():
    classifier, fetcher, _, _ = make_classifier()
    options = ClassifyOptions(use_oracle=False)

    assert await classifier.classify(SIG, tx={"transaction": None}, options=options) is None
    assert fetcher.total_calls == 0


class ExplodingStrategy(ClassifierStrategy):
    name = "exploding"

    def classify(self, ctx):
        raise RuntimeError("boom")


def test_failing_strategy_is_skipped():
    classifier = TradeClassifier(strategies=[ExplodingStrategy(), GenericParser()])

    trade = classifier.classify_record(buy_tx(SIG), BATCH_OPTIONS, signature=SIG)

    assert trade.source == "generic_parser"
    assert classifier.get_stats()["strategy_errors"] == 1


def test_classify_record_uses_given_sol_price():
    classifier = TradeClassifier()

    trade = classifier.classify_record(buy_tx(SIG, sol=2.0, tokens=1_000.0), sol_usd=100.0, signature=SIG)

    assert trade.price == pytest.approx(0.002)
    assert trade.price_usd == pytest.approx(0.2)
    assert classifier.cache.get(SIG) is trade


def test_wrapped_sol_buy_on_raydium():
    classifier = TradeClassifier()

    trade = classifier.classify_record(wsol_trade_tx(SIG), signature=SIG)

    assert trade.type.value == "buy"
    assert trade.dex == DexIdentity.RAYDIUM
    assert trade.source == "raydium_parser"
    assert trade.sold_token.amount == pytest.approx(1.5)


def test_classify_record_without_price_leaves_usd_empty():
    classifier = TradeClassifier(cache=ResultCache(capacity=5))
    trade = classifier.classify_record(swap_tx(SIG), signature=SIG)
    assert isinstance(trade, SwapTrade)
    assert trade.price == pytest.approx(2.0)
    assert trade.price_usd is None


def test_stable_swap_usd_price():
    trade = make_trade(
        TokenAmount(mint=USDC_MINT, symbol="USDC", amount=50.0, decimals=6),
        TokenAmount(mint=MINT_M, symbol="M", amount=200.0, decimals=6),
        dex=DexIdentity.ORCA,
        source="generic_parser",
    )
    priced = apply_usd_price(trade, None)
    assert priced.price_usd == pytest.approx(0.25)

    reverse = apply_usd_price(trade.swapped(), None)
    assert reverse.price_usd == pytest.approx(0.25)


@pytest.mark.asyncio
async def test_parse_report_success():
    classifier, _, _, _ = make_classifier({SIG: buy_tx(SIG)})

    report = await classifier.parse_report(SIG)

    assert report["success"] is True
    assert report["data"]["type"] == "buy"
    assert report["data"]["holderAddress"] == WALLET
    assert report["data"]["soldToken"]["mint"] == SOL_MINT


@pytest.mark.asyncio
async def test_parse_report_invalid_signature():
    classifier, fetcher, _, _ = make_classifier()

    report = await classifier.parse_report("not a signature")

    assert report["success"] is False
    assert report["error"] == "Invalid transaction signature"
    assert fetcher.total_calls == 0


@pytest.mark.asyncio
async def test_parse_report_not_found():
    classifier, _, _, _ = make_classifier()

    report = await classifier.parse_report(SIG)

    assert report["success"] is False
    assert report["error"] == "Transaction not found"
    assert report["debug"] is None


@pytest.mark.asyncio
async def test_parse_report_unclassifiable_has_diagnostics():
    payload = build_tx(
        accounts=[WALLET, RECEIVER],
        pre_balances=[LAMPORTS, 0],
        post_balances=[LAMPORTS, 0],
        signature=SIG,
    )
    classifier, _, _, _ = make_classifier({SIG: payload})

    report = await classifier.parse_report(SIG)

    assert report["success"] is False
    assert report["error"] == "Could not classify transaction"
    assert report["debug"]["signature"] == SIG
    assert report["debug"]["dex"] == "unknown"
    assert report["hint"] == report["debug"]["reason"]
