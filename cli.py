# cli.py
import asyncio
import sys
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Any, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.prompt import IntPrompt, Confirm, Prompt
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.text import Text
from rich import box

from prompt_toolkit import PromptSession, prompt
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.styles import Style as PromptStyle

from storefront_sdk import config
from storefront_sdk.client import AsyncStoreClient, StoreClient
from storefront_sdk.errors import CommitStepFailed, PartialCommit, StorefrontError
from storefront_sdk.logging_config import get_logger, setup_logging
from storefront_sdk.models import Address, ByName, CartLine, Product, address_natural_key
from storefront_sdk.prefs import DisplayPreferences, JsonFilePreferenceStore, PreferenceStore, load_preferences, save_preferences
from storefront_sdk.pricing import cart_total, clamp_quantity, default_selection, iter_combinations, line_total, price_range, unit_price
from storefront_sdk.staging import StagedCollectionEditor

logger = get_logger(__name__)
console = Console()

THEME_ACCENTS = {"default": "cyan", "ocean": "blue", "forest": "green", "sunset": "magenta"}

# Custom prompt style for prompt_toolkit
custom_style = PromptStyle.from_dict({
    'completion-menu.completion': 'bg:#008888 #ffffff',
    'completion-menu.completion.current': 'bg:#00aaaa #000000',
    'scrollbar.background': 'bg:#88aaaa',
    'scrollbar.button': 'bg:#222222',
})


class ConsoleState:
    """What the menu loop carries between actions."""

    def __init__(self, client: StoreClient, prefs_store: PreferenceStore):
        self.client = client
        self.prefs_store = prefs_store
        self.prefs = load_preferences(prefs_store)
        self.status_message = "Ready"
        self.product_cache: List[Product] = []
        self.user_cache = set()

    @property
    def accent(self) -> str:
        accent = THEME_ACCENTS.get(self.prefs.theme, "cyan")
        return f"bold {accent}" if self.prefs.color_mode == "dark" else accent


# ---------------------------
# Formatting
# ---------------------------
def format_price(value: Decimal) -> str:
    return f"${value:,.2f}"


def price_display(product: Product) -> str:
    rng = price_range(product.base_price, product.options)
    if rng.min == 0 and rng.max == 0:
        return "Price not available"
    if rng.has_range:
        return f"From {format_price(rng.min)}"
    return format_price(rng.min)


def sort_products(products: List[Product], prefs: DisplayPreferences) -> List[Product]:
    if prefs.sort_by == "price":
        key = lambda p: price_range(p.base_price, p.options).min
    elif prefs.sort_by == "name":
        key = lambda p: p.name.lower()
    else:
        # server order is insertion order
        return list(reversed(products))
    return sorted(products, key=key, reverse=prefs.sort_order == "desc")


# ---------------------------
# Display helpers
# ---------------------------
def show_products(state: ConsoleState, products: List[Product]):
    if not products:
        console.print("[italic yellow]No products found[/italic yellow]")
        return

    table = Table(
        title="📦 Products Catalog",
        box=box.ROUNDED,
        header_style=state.accent,
        title_style="bold magenta",
        show_lines=state.prefs.view_mode == "grid",
    )
    table.add_column("ID", style="dim", width=12)
    table.add_column("Name", style="bold", width=24)
    table.add_column("Price", justify="right", width=18)
    table.add_column("Qty", justify="right", width=8)
    table.add_column("Category", width=15)

    for p in sort_products(products, state.prefs):
        table.add_row(p.id[:12], p.name, price_display(p), str(p.quantity), p.category or "N/A")
    console.print(table)


def show_product(state: ConsoleState, product: Product):
    selection = default_selection(product.options)
    header = Text()
    header.append(product.name, style="bold")
    header.append(f"  {price_display(product)}", style="green")
    console.print(Panel(header, border_style=state.accent))

    if not product.options:
        return

    table = Table(box=box.SIMPLE, header_style=state.accent)
    table.add_column("Variant")
    table.add_column("Price", justify="right")
    ordered = sorted((o for o in product.options if o.values), key=lambda o: o.sort_order)
    for combo in iter_combinations(product.options):
        label = " / ".join(v.name for v in combo)
        sold_out = any(v.is_sold_out for v in combo)
        names = {o.name: v.name for o, v in zip(ordered, combo)}
        price = unit_price(product.base_price, product.options, ByName(names))
        table.add_row(f"[dim]{label} (sold out)[/dim]" if sold_out else label, format_price(price))
    console.print(table)
    console.print(f"Default selection: [bold]{format_price(unit_price(product.base_price, product.options, selection))}[/bold]")


def show_cart(state: ConsoleState, cart: Dict[str, Any]):
    lines = [CartLine.model_validate(it) for it in cart.get("items", [])]
    try:
        total = format_price(cart_total(lines))
    except StorefrontError as e:
        logger.warning("cannot total cart of %s: %s", cart.get("user_email"), e)
        console.print(show_status(f"Error: {e}", False))
        total = "n/a"

    title = Text()
    title.append("🛒 Shopping Cart - ", style="bold")
    title.append(cart.get('user_email', 'Unknown User'), style=state.accent)
    title.append(f" - Total: {total}", style="bold green")

    if not lines:
        console.print(Panel("Your cart is empty 🛍️", title=title, style="blue"))
        return

    table = Table(box=box.ROUNDED, header_style="bold blue", show_lines=True)
    table.add_column("Product", style="bold", width=30)
    table.add_column("Options", width=24)
    table.add_column("Qty", justify="right", width=6)
    table.add_column("Price", justify="right", width=12)
    table.add_column("Subtotal", justify="right", width=12)

    for line in lines:
        chosen = ", ".join(f"{k}: {v}" for k, v in line.selected_options.items()) or "-"
        if line.product is None:
            table.add_row(f"[red]Missing product: {line.product_id}[/red]", chosen, str(line.quantity), "-", "-")
            continue
        try:
            unit = unit_price(line.product.base_price, line.product.options, ByName(line.selected_options))
            price, subtotal = format_price(unit), format_price(line_total(unit, line.quantity))
        except StorefrontError:
            price, subtotal = "-", "[red]invalid[/red]"
        table.add_row(line.product.name, chosen, str(line.quantity), price, subtotal)

    console.print(Panel(table, title=title, border_style="blue"))


def show_addresses(state: ConsoleState, editor: StagedCollectionEditor):
    table = Table(title="📮 Address book", box=box.ROUNDED, header_style=state.accent, show_lines=True)
    table.add_column("#", justify="right", width=3)
    table.add_column("Id", style="dim", width=12)
    table.add_column("Name", width=18)
    table.add_column("Address", width=40)
    table.add_column("", width=10)

    for position, a in enumerate(editor.items):
        status = ""
        if a.id in editor.created:
            status = "[yellow]new[/yellow]"
        elif a.id in editor.updated:
            status = "[yellow]edited[/yellow]"
        lines = ", ".join(x for x in (a.line1, a.line2, a.city, a.region, a.postal_code, a.country) if x)
        flag = "[green]default[/green]" if a.is_default else ""
        table.add_row(str(position + 1), str(a.id)[:12], a.name, lines, " ".join(x for x in (flag, status) if x))
    console.print(table)
    if editor.deleted:
        console.print(f"[red]{len(editor.deleted)} address(es) will be deleted on save[/red]")


def show_status(message: str, is_success: bool = True):
    style = "green" if is_success else "red"
    return Panel.fit(f"[{style}]{message}[/{style}]", title="Status")


# ---------------------------
# API wrapper with enhanced exception handling
# ---------------------------
def try_api(state: ConsoleState, fn, *args, success_msg: Optional[str] = None, **kwargs):
    """
    Calls fn(*args, **kwargs) behind a spinner.
    Errors are reported in the status panel and None is returned.
    """
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
        ) as progress:
            progress.add_task(description="Processing...", total=None)
            result = fn(*args, **kwargs)

        if success_msg:
            state.status_message = success_msg
            console.print(show_status(success_msg, True))
        return result
    except StorefrontError as e:
        state.status_message = f"Error: {e}"
        console.print(show_status(f"Error: {e}", False))
        return None


# ---------------------------
# Autocompletion helpers
# ---------------------------
def get_product_completer(state: ConsoleState):
    if not state.product_cache:
        state.product_cache = try_api(state, state.client.list_products, page_size=100) or []
    return WordCompleter([p.id for p in state.product_cache], ignore_case=True)


def get_user_completer(state: ConsoleState):
    return WordCompleter(list(state.user_cache), ignore_case=True)


def prompt_with_autocomplete(message: str, completer=None, default: str = ""):
    return prompt(f"{message} ", completer=completer, style=custom_style, default=default)


def ask_selection(product: Product) -> Dict[str, str]:
    chosen = {}
    for option in sorted(product.options, key=lambda o: o.sort_order):
        names = [v.name for v in option.values if not v.is_sold_out]
        if not names:
            continue
        default = next((v.name for v in option.values if v.is_default and not v.is_sold_out), names[0])
        label = option.display_name or f"Choose {option.name}"
        value = prompt_with_autocomplete(label, completer=WordCompleter(names, ignore_case=True), default=default).strip()
        chosen[option.name] = value if value in names else default
    return chosen


# ---------------------------
# Address book (staged editing)
# ---------------------------
async def ask(session: PromptSession, message: str, default: str = "", completer=None) -> str:
    return (await session.prompt_async(f"{message} ", default=default, completer=completer, style=custom_style)).strip()


async def ask_address(session: PromptSession, current: Optional[Address] = None) -> Optional[Dict[str, Any]]:
    fields = {}
    for name, label in (("name", "Name"), ("line1", "Address line 1"), ("line2", "Address line 2"),
                        ("city", "City"), ("region", "State"), ("postal_code", "ZIP code"), ("country", "Country")):
        if current is not None:
            default = getattr(current, name) or ""
        else:
            default = "US" if name == "country" else ""
        fields[name] = await ask(session, label, default=default)
    missing = [k for k in ("name", "line1", "city", "region", "postal_code", "country") if not fields[k]]
    if missing:
        console.print(f"[red]Required: {', '.join(missing)}[/red]")
        return None
    return fields


async def address_book(state: ConsoleState, email: str, transport=None):
    session = PromptSession()
    async with AsyncStoreClient(base_url=state.client.base_url, transport=transport) as api:
        editor = StagedCollectionEditor(api.addresses(email), natural_key=address_natural_key)
        try:
            await editor.load()
        except StorefrontError as e:
            console.print(show_status(f"Failed to load addresses: {e}", False))
            return

        while True:
            show_addresses(state, editor)
            ids = WordCompleter([str(i + 1) for i in range(len(editor.items))])
            choice = (await ask(session, "[a]dd [e]dit [d]elete [s]et default [m]ove | [w] save [c]ancel >")).lower()

            def pick(raw: str):
                try:
                    return editor.items[int(raw) - 1].id
                except (ValueError, IndexError):
                    console.print("[red]No such address[/red]")
                    return None

            if choice == "a":
                fields = await ask_address(session)
                if fields:
                    editor.stage_create({**fields, "type": "shipping"})
            elif choice == "e":
                item_id = pick(await ask(session, "Address #", completer=ids))
                if item_id is not None:
                    fields = await ask_address(session, editor.get(item_id))
                    if fields:
                        editor.stage_update(item_id, fields)
            elif choice == "d":
                item_id = pick(await ask(session, "Address #", completer=ids))
                if item_id is not None and Confirm.ask("Are you sure you want to delete this address?"):
                    editor.stage_delete(item_id)
            elif choice == "s":
                item_id = pick(await ask(session, "Address #", completer=ids))
                if item_id is not None:
                    editor.stage_set_default(item_id)
            elif choice == "m":
                item_id = pick(await ask(session, "Address #", completer=ids))
                if item_id is not None:
                    editor.stage_move(item_id, IntPrompt.ask("New position", default=1) - 1)
            elif choice == "w":
                try:
                    await editor.commit()
                except PartialCommit as e:
                    console.print(show_status(f"Saved only part of the changes ({e}). Reloading.", False))
                    await editor.load()
                    continue
                except CommitStepFailed as e:
                    console.print(show_status(f"Failed to save changes: {e}", False))
                    if Confirm.ask("Discard changes and reload?", default=True):
                        await editor.load()
                    continue
                state.status_message = "Addresses saved"
                console.print(show_status("Addresses saved", True))
                return
            elif choice == "c":
                editor.cancel()
                return


# ---------------------------
# Preferences
# ---------------------------
def edit_preferences(state: ConsoleState):
    p = state.prefs
    theme = Prompt.ask("Theme", choices=list(THEME_ACCENTS), default=p.theme)
    color_mode = Prompt.ask("Color mode", choices=["light", "dark"], default=p.color_mode)
    sort_by = Prompt.ask("Sort products by", choices=["name", "price", "newest"], default=p.sort_by)
    sort_order = Prompt.ask("Sort order", choices=["asc", "desc"], default=p.sort_order)
    view_mode = Prompt.ask("View mode", choices=["grid", "list"], default=p.view_mode)
    state.prefs = DisplayPreferences(theme=theme, color_mode=color_mode, sort_by=sort_by, sort_order=sort_order, view_mode=view_mode)
    save_preferences(state.prefs_store, state.prefs)
    state.status_message = "Preferences saved"


# ---------------------------
# Layout and Header
# ---------------------------
def create_header(state: ConsoleState):
    header = Table(show_header=False, box=box.ROUNDED)
    header.add_column("left", width=30)
    header.add_column("center", width=40)
    header.add_column("right", width=30)

    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    header.add_row(
        "🛍️ Storefront Back-office",
        f"[{state.accent}]Catalogue, carts and address books[/{state.accent}]",
        f"[dim]{now}[/dim]"
    )
    return Panel(header, style=state.accent)


def ask_email(state: ConsoleState) -> str:
    email = prompt_with_autocomplete("Enter user email", completer=get_user_completer(state)).strip()
    if email:
        state.user_cache.add(email)
    return email


# ---------------------------
# Main menu
# ---------------------------
def menu(state: ConsoleState):
    console.clear()
    console.print(create_header(state))

    while True:
        if state.status_message:
            console.print(show_status(state.status_message, "Error" not in state.status_message))

        menu_table = Table.grid(padding=(0, 2))
        menu_table.add_column("Key", style=state.accent, width=4)
        menu_table.add_column("Option", width=30)
        menu_table.add_column("Key", style=state.accent, width=4)
        menu_table.add_column("Option", width=30)

        options = [
            ("1", "📦 List products", "5", "🛒 View cart"),
            ("2", "🔍 Search products", "6", "➖ Remove from cart"),
            ("3", "ℹ️ Product variants", "7", "📮 Address book"),
            ("4", "➕ Add to cart", "8", "🎨 Preferences"),
            ("", "", "q", "👋 Quit"),
        ]
        for row in options:
            menu_table.add_row(*row)

        console.print(Panel(menu_table, title="📋 Menu", border_style="yellow"))

        choice = prompt_with_autocomplete(
            "\nChoose an option",
            completer=WordCompleter([str(i) for i in range(1, 9)] + ["q", "quit", "exit"])
        ).strip()

        if choice == "1":
            products = try_api(state, state.client.list_products, page_size=100, success_msg="Products loaded successfully")
            if products is not None:
                state.product_cache = products
                show_products(state, products)

        elif choice == "2":
            term = prompt_with_autocomplete("Enter search term")
            res = try_api(state, state.client.search_products, term, success_msg=f"Search for '{term}' completed")
            if res is not None:
                show_products(state, res)

        elif choice == "3":
            pid = prompt_with_autocomplete("Enter product ID", completer=get_product_completer(state))
            product = try_api(state, state.client.get_product, pid)
            if product:
                show_product(state, product)

        elif choice == "4":
            email = ask_email(state)
            pid = prompt_with_autocomplete("Enter product ID", completer=get_product_completer(state))
            product = try_api(state, state.client.get_product, pid)
            if product is None:
                continue
            selected = ask_selection(product)
            qty = clamp_quantity(IntPrompt.ask("Enter quantity", default=1))
            resp = try_api(state, state.client.add_to_cart, email, pid, qty, selected,
                           success_msg=f"Added {qty} x {product.name} to cart")
            if resp is not None:
                cart_view = try_api(state, state.client.view_cart, email)
                if cart_view:
                    show_cart(state, cart_view)

        elif choice == "5":
            email = ask_email(state)
            resp = try_api(state, state.client.view_cart, email, success_msg=f"Cart loaded for {email}")
            if resp:
                show_cart(state, resp)

        elif choice == "6":
            email = ask_email(state)
            pid = prompt_with_autocomplete("Enter product ID", completer=get_product_completer(state))
            if Confirm.ask("Remove entire item from cart?"):
                resp = try_api(state, state.client.remove_from_cart, email, pid, success_msg=f"Product {pid} removed from cart")
            else:
                qty = IntPrompt.ask("Quantity to remove", default=1)
                resp = try_api(state, state.client.remove_from_cart, email, pid, qty, success_msg=f"Removed {qty} of product {pid} from cart")
            if resp is not None:
                cart_view = try_api(state, state.client.view_cart, email)
                if cart_view:
                    show_cart(state, cart_view)

        elif choice == "7":
            email = ask_email(state)
            if email:
                asyncio.run(address_book(state, email))

        elif choice == "8":
            edit_preferences(state)

        elif choice.lower() in ("q", "quit", "exit"):
            if Confirm.ask("Are you sure you want to quit?"):
                console.print(Panel.fit("[bold green]Goodbye 👋[/bold green]", title="Goodbye"))
                return

        console.print()
        console.rule(style="dim")


def main():
    setup_logging()
    state = ConsoleState(StoreClient(), JsonFilePreferenceStore(config.STORE_PREFS_PATH))
    try:
        menu(state)
    except KeyboardInterrupt:
        console.print("\n\n[bold red]Interrupted by user[/bold red]")
        sys.exit(1)
    except Exception as e:
        logger.exception("unexpected error")
        console.print(f"\n\n[bold red]Unexpected error: {e}[/bold red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
