"""
Swap shape planning.

A ShapePlan describes, per leg, which assets move where: the unique
asset transfer (if any), the token transfers with the UTXOs backing them,
which inputs the user signs as asset holder and which escrow UTXOs the
execution layer appends. DraftBuilder turns each leg into one draft;
planning does all the indexer lookups, building does all the layout.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from loguru import logger

from runecore.constants import (
    DISCRIMINANT_ASSET_SWAP,
    DISCRIMINANT_BASKET_SWAP,
    DISCRIMINANT_TOKEN_SWAP,
)
from runecore.errors import InputValidationError, InsufficientFunds, NoAvailableCounterAsset
from runecore.models import AssetUtxo, OutputRole, SwapShape, TokenUtxo, UtxoRef
from runecore.runestone import RunestoneError, allocate, to_minimal_units
from runewallet.backends.base import IndexerBackend
from runewallet.selector import UtxoSelector
from runeswap.config import BasketDestination, SwapSettings
from runeswap.escrow import EscrowAccount, EscrowResolver
from runeswap.wallet import WalletInfo


SHAPE_DISCRIMINANTS = {
    SwapShape.ASSET_FOR_TOKEN: DISCRIMINANT_ASSET_SWAP,
    SwapShape.TOKEN_FOR_ASSET: DISCRIMINANT_TOKEN_SWAP,
    SwapShape.TOKEN_BASKET_REDEMPTION: DISCRIMINANT_BASKET_SWAP,
    SwapShape.ASSET_CLAIM: DISCRIMINANT_ASSET_SWAP,
}


@dataclass
class TokenTransfer:
    """
    Move amount of token_id to the receiver, returning the rest to change.

    utxos are the token inputs consumed; their total is split between the
    receiver and (when anything is left) the change output.
    """

    token_id: str
    amount: int
    utxos: list[TokenUtxo]
    receiver_script: bytes
    receiver_role: OutputRole
    change_script: bytes
    change_role: OutputRole

    @property
    def total(self) -> int:
        return sum(u.amount for u in self.utxos)

    @property
    def remainder(self) -> int:
        return self.total - self.amount


@dataclass
class AssetTransfer:
    utxo: AssetUtxo
    receiver_script: bytes
    receiver_role: OutputRole


@dataclass
class LegPlan:
    """
    One draft's worth of movements.

    external_credit is the part of the escrow inputs' value that funds
    outputs of the draft (an escrow asset passed through at its value).
    Escrow value beyond that is not credited to the user.
    """

    discriminant: int
    asset: AssetTransfer | None = None
    transfers: list[TokenTransfer] = field(default_factory=list)
    asset_inputs: list[UtxoRef] = field(default_factory=list)
    external_inputs: list[UtxoRef] = field(default_factory=list)
    external_credit: int = 0

    @property
    def referenced_utxos(self) -> list[UtxoRef]:
        return list(self.external_inputs)


@dataclass
class ShapePlan:
    shape: SwapShape
    legs: list[LegPlan]


def _dedupe(utxos: list[UtxoRef]) -> list[UtxoRef]:
    seen: set[str] = set()
    unique = []
    for utxo in utxos:
        if utxo.outpoint not in seen:
            seen.add(utxo.outpoint)
            unique.append(utxo)
    return unique


def parse_amount(value: Decimal | int | str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise InputValidationError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite() or amount <= 0:
        raise InputValidationError(f"Amount must be positive, got {value}")
    return amount


class ShapePlanner:
    def __init__(
        self,
        settings: SwapSettings,
        indexer: IndexerBackend,
        selector: UtxoSelector,
        resolver: EscrowResolver,
    ):
        self.settings = settings
        self.indexer = indexer
        self.selector = selector
        self.resolver = resolver
        self._collection = frozenset(settings.collection)

    async def plan(
        self,
        shape: SwapShape,
        wallet: WalletInfo,
        amount_or_asset_id: Decimal | int | str | None = None,
    ) -> ShapePlan:
        """
        Plan the legs of a swap.

        amount_or_asset_id is read per shape:
            ASSET_FOR_TOKEN: optional asset id to acquire (any collection asset if None)
            TOKEN_FOR_ASSET: asset id the user gives
            TOKEN_BASKET_REDEMPTION: source token amount in display units
            ASSET_CLAIM: ignored
        """
        if shape == SwapShape.ASSET_FOR_TOKEN:
            asset_id = str(amount_or_asset_id) if amount_or_asset_id is not None else None
            legs = [await self.plan_asset_for_token(wallet, asset_id)]
        elif shape == SwapShape.TOKEN_FOR_ASSET:
            if amount_or_asset_id is None:
                raise InputValidationError("An asset id is required to swap an asset for tokens")
            legs = [await self.plan_token_for_asset(wallet, str(amount_or_asset_id))]
        elif shape == SwapShape.TOKEN_BASKET_REDEMPTION:
            if amount_or_asset_id is None:
                raise InputValidationError("An amount is required for a basket redemption")
            legs = await self.plan_basket(wallet, parse_amount(amount_or_asset_id))
        elif shape == SwapShape.ASSET_CLAIM:
            legs = [await self.plan_claim(wallet)]
        else:
            raise InputValidationError(f"Unsupported swap shape: {shape}")
        return ShapePlan(shape=shape, legs=legs)

    def _check_collection_asset(self, asset_id: str) -> None:
        if asset_id not in self._collection:
            logger.warning(f"Rejected asset {asset_id}: not in {self.settings.collection_name}")
            raise InputValidationError(
                f"Asset {asset_id} is not part of the {self.settings.collection_name} collection"
            )

    async def _escrow_asset(self, escrow: EscrowAccount, asset_ids: Collection[str]) -> AssetUtxo:
        utxo = await self.selector.find_asset_utxo(escrow.address, asset_ids)
        if utxo is None:
            raise NoAvailableCounterAsset("Escrow holds no matching asset right now")
        return utxo

    async def _token_amount(self, token_id: str, display_amount: Decimal) -> int:
        divisibility = await self.indexer.get_token_divisibility(token_id)
        try:
            amount = to_minimal_units(display_amount, divisibility)
        except RunestoneError as e:
            raise InputValidationError(str(e)) from e
        if amount <= 0:
            raise InputValidationError(f"Amount {display_amount} of {token_id} rounds to zero")
        return amount

    async def _escrow_tokens(
        self, escrow: EscrowAccount, token_id: str, amount: int, exclude: Collection[str] = ()
    ) -> list[TokenUtxo]:
        try:
            selection = await self.selector.select_token_utxos(
                escrow.address, token_id, amount, exclude=exclude
            )
        except InsufficientFunds as e:
            raise NoAvailableCounterAsset(f"Escrow does not hold enough {token_id}") from e
        return selection.utxos

    async def plan_asset_for_token(
        self, wallet: WalletInfo, asset_id: str | None = None
    ) -> LegPlan:
        """User pays asset_price tokens and receives an escrow asset."""
        if asset_id is not None:
            self._check_collection_asset(asset_id)
        escrow = await self.resolver.resolve(self.settings.escrow_account_pubkey)
        asset = await self._escrow_asset(escrow, {asset_id} if asset_id else self._collection)

        token_id = self.settings.asset_token_id
        amount = await self._token_amount(token_id, self.settings.asset_price)
        selection = await self.selector.select_token_utxos(
            wallet.ordinals_address, token_id, amount
        )

        return LegPlan(
            discriminant=DISCRIMINANT_ASSET_SWAP,
            asset=AssetTransfer(
                utxo=asset,
                receiver_script=wallet.ordinals_script,
                receiver_role=OutputRole.USER_ASSET,
            ),
            transfers=[
                TokenTransfer(
                    token_id=token_id,
                    amount=amount,
                    utxos=selection.utxos,
                    receiver_script=escrow.script,
                    receiver_role=OutputRole.ESCROW_TOKEN,
                    change_script=wallet.ordinals_script,
                    change_role=OutputRole.USER_TOKEN,
                )
            ],
            asset_inputs=list(selection.utxos),
            external_inputs=[asset],
            external_credit=asset.value,
        )

    async def plan_token_for_asset(self, wallet: WalletInfo, asset_id: str) -> LegPlan:
        """User gives a collection asset and receives asset_price tokens from escrow."""
        self._check_collection_asset(asset_id)
        user_asset = await self.selector.find_asset_utxo(wallet.ordinals_address, {asset_id})
        if user_asset is None:
            raise InputValidationError(f"Asset {asset_id} is not spendable from this wallet")

        escrow = await self.resolver.resolve(self.settings.escrow_account_pubkey)
        token_id = self.settings.asset_token_id
        amount = await self._token_amount(token_id, self.settings.asset_price)
        escrow_utxos = await self._escrow_tokens(escrow, token_id, amount)

        return LegPlan(
            discriminant=DISCRIMINANT_TOKEN_SWAP,
            asset=AssetTransfer(
                utxo=user_asset,
                receiver_script=escrow.script,
                receiver_role=OutputRole.ESCROW_ASSET,
            ),
            transfers=[
                TokenTransfer(
                    token_id=token_id,
                    amount=amount,
                    utxos=escrow_utxos,
                    receiver_script=wallet.ordinals_script,
                    receiver_role=OutputRole.USER_TOKEN,
                    change_script=escrow.script,
                    change_role=OutputRole.ESCROW_TOKEN,
                )
            ],
            asset_inputs=[user_asset],
            external_inputs=_dedupe(list(escrow_utxos)),
        )

    async def plan_claim(self, wallet: WalletInfo) -> LegPlan:
        """User receives the first available collection asset and pays only fees."""
        escrow = await self.resolver.resolve(self.settings.escrow_account_pubkey)
        asset = await self._escrow_asset(escrow, self._collection)
        return LegPlan(
            discriminant=DISCRIMINANT_ASSET_SWAP,
            asset=AssetTransfer(
                utxo=asset,
                receiver_script=wallet.ordinals_script,
                receiver_role=OutputRole.USER_ASSET,
            ),
            external_inputs=[asset],
            external_credit=asset.value,
        )

    async def basket_allocations(
        self, amount: Decimal
    ) -> list[tuple[BasketDestination, int]]:
        """Floored per-destination amounts, in minimal units."""
        allocations = []
        for destination in self.settings.basket.destinations:
            divisibility = await self.indexer.get_token_divisibility(destination.token_id)
            share = allocate(amount, destination.weight, divisibility)
            if share <= 0:
                raise InputValidationError(
                    f"Amount {amount} gives no {destination.token_id} "
                    f"at weight {destination.weight}"
                )
            allocations.append((destination, share))
        return allocations

    async def plan_basket(self, wallet: WalletInfo, amount: Decimal) -> list[LegPlan]:
        """
        Split a basket redemption into sequential legs.

        Leg 1 moves the source tokens into escrow; every leg releases its
        share of destination tokens to the user. Transfers in one leg may
        share an escrow UTXO, but a UTXO spent by one leg is never offered
        to a later one.
        """
        basket = self.settings.basket
        if amount < basket.min_amount:
            raise InputValidationError(
                f"Basket redemption needs at least {basket.min_amount} tokens, got {amount}"
            )

        escrow = await self.resolver.resolve(self.settings.basket_account_pubkey)
        source_amount = await self._token_amount(basket.source_token_id, amount)
        source = await self.selector.select_token_utxos(
            wallet.ordinals_address, basket.source_token_id, source_amount
        )
        allocations = await self.basket_allocations(amount)

        legs: list[LegPlan] = []
        used: set[str] = set()
        position = 0
        for leg_number, size in enumerate(basket.legs, start=1):
            leg = LegPlan(discriminant=DISCRIMINANT_BASKET_SWAP)
            if leg_number == 1:
                leg.transfers.append(
                    TokenTransfer(
                        token_id=basket.source_token_id,
                        amount=source_amount,
                        utxos=source.utxos,
                        receiver_script=escrow.script,
                        receiver_role=OutputRole.ESCROW_TOKEN,
                        change_script=wallet.ordinals_script,
                        change_role=OutputRole.USER_TOKEN,
                    )
                )
                leg.asset_inputs.extend(source.utxos)

            escrow_utxos: list[UtxoRef] = []
            for destination, share in allocations[position : position + size]:
                utxos = await self._escrow_tokens(
                    escrow, destination.token_id, share, exclude=used
                )
                leg.transfers.append(
                    TokenTransfer(
                        token_id=destination.token_id,
                        amount=share,
                        utxos=utxos,
                        receiver_script=wallet.ordinals_script,
                        receiver_role=OutputRole.USER_TOKEN,
                        change_script=escrow.script,
                        change_role=OutputRole.ESCROW_TOKEN,
                    )
                )
                escrow_utxos.extend(utxos)
            leg.external_inputs = _dedupe(escrow_utxos)
            used.update(u.outpoint for u in leg.external_inputs)
            position += size
            legs.append(leg)

        logger.info(
            f"Planned basket redemption of {amount} {basket.source_token_id} "
            f"in {len(legs)} legs"
        )
        return legs
