"""Tools exposed to the language model and their execution against session/menu/order state."""
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..app.prompt_builder import format_confirmation
from ..data.menu_store import MenuItem, MenuStore, detect_category_from_text, requires_size, resolve_size
from ..schemas.order_models import STATUS_LABELS, OrderInput, OrderItemInput, OrderStatus
from ..schemas.session_models import Session
from ..schemas.tool_models import (
    TOOL_ARGS,
    AddMixedPizzaArgs,
    AddToCartArgs,
    GetMenuItemsArgs,
    RemoveFromCartArgs,
    SearchMenuArgs,
    SetDeliveryDetailsArgs,
    ToolMeta,
    ToolResult,
)
from ..utils.address import stringify_address
from ..utils.fuzzy import best_fuzzy_match
from ..utils.logger import get_logger

logger = get_logger("tools")

CATEGORY_ENUM = ["pizza", "lasagna", "drink", "extra"]
MIXED_SIZES = ["Grande", "Familiar"]


def build_tool_declarations(menu: List[MenuItem]) -> List[Dict[str, Any]]:
    """JSON-schema function declarations; item ids and sizes come from the live menu."""
    item_ids = [i.id for i in menu]
    sizes = sorted({size for i in menu for size in i.prices})
    item_id_schema: Dict[str, Any] = {"type": "string", "description": "ID del producto del menú"}
    if item_ids:
        item_id_schema["enum"] = item_ids
    size_schema: Dict[str, Any] = {"type": "string", "description": "Tamaño elegido (ej. Grande, Familiar)"}
    if sizes:
        size_schema["enum"] = sizes

    def fn(name, description, properties=None, required=None):
        return {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties or {}, "required": required or []},
        }

    return [
        fn("showCart", "Muestra el carrito actual del cliente."),
        fn("getMenu", "Muestra las categorías del menú."),
        fn("getMenuItems", "Muestra los productos de una categoría.",
           {"categoryId": {"type": "string", "enum": CATEGORY_ENUM, "description": "Categoría a mostrar"}},
           ["categoryId"]),
        fn("searchMenu", "Busca productos en la carta actual por nombre, ingrediente o categoría.",
           {
               "query": {"type": "string", "description": 'Término a buscar (ej. "hawaiana")'},
               "category": {"type": "string", "enum": CATEGORY_ENUM, "description": "Categoría (opcional)"},
               "exclude": {"type": "array", "items": {"type": "string"},
                           "description": 'Ingredientes a excluir (ej. "cebolla")'},
           }),
        fn("addToCart", "Agrega un producto al carrito.",
           {
               "itemId": item_id_schema,
               "quantity": {"type": "integer", "description": "Cantidad solicitada"},
               "size": size_schema,
           },
           ["itemId"]),
        fn("removeFromCart", "Elimina un producto del carrito.",
           {"itemId": {"type": "string", "description": "ID del producto o línea del carrito"}},
           ["itemId"]),
        fn("setDeliveryDetails", "Guarda nombre y dirección de entrega del cliente.",
           {
               "name": {"type": "string", "description": "Nombre completo del cliente"},
               "address": {"type": "string", "description": "Dirección de entrega con referencia"},
           },
           ["name", "address"]),
        fn("addMixedPizza", "Agrega una pizza mitad y mitad de dos sabores.",
           {
               "flavorA": {"type": "string", "description": "Nombre del primer sabor"},
               "flavorB": {"type": "string", "description": "Nombre del segundo sabor"},
               "size": {"type": "string", "enum": MIXED_SIZES},
           },
           ["flavorA", "flavorB", "size"]),
        fn("startCheckout", "Inicia el checkout y verifica que haya nombre, dirección y ubicación."),
        fn("confirmOrder", "Confirma y registra el pedido (solo con nombre, dirección y delivery)."),
        fn("checkOrderStatus", "Consulta el estado del último pedido del cliente."),
    ]


def _error(message: str, **extra) -> ToolResult:
    return ToolResult(response={"status": "error", "message": message, **extra})


class ToolExecutor:
    """Runs one validated tool call against the in-memory session of the current turn."""

    def __init__(self, session_manager, menu_store: MenuStore, order_store, customer_store):
        self.session_manager = session_manager
        self.menu_store = menu_store
        self.order_store = order_store
        self.customer_store = customer_store
        self.handlers = {
            "showCart": self._show_cart,
            "getMenu": self._get_menu,
            "getMenuItems": self._get_menu_items,
            "searchMenu": self._search_menu,
            "addToCart": self._add_to_cart,
            "removeFromCart": self._remove_from_cart,
            "setDeliveryDetails": self._set_delivery_details,
            "addMixedPizza": self._add_mixed_pizza,
            "startCheckout": self._start_checkout,
            "confirmOrder": self._confirm_order,
            "checkOrderStatus": self._check_order_status,
        }

    def execute(self, phone: str, session: Session, name: str, raw_args: Optional[Dict[str, Any]]) -> ToolResult:
        args_model = TOOL_ARGS.get(name)
        if args_model is None:
            return _error(f"Función desconocida: {name}")
        try:
            args = args_model.model_validate(raw_args or {})
        except ValidationError as e:
            logger.info("Invalid arguments for %s: %s", name, e.errors())
            return _error("Argumentos inválidos.", details=[err.get("msg") for err in e.errors()])
        return self.handlers[name](phone, session, args)

    # ---- display ----

    def _show_cart(self, phone, session, args) -> ToolResult:
        return ToolResult(response={"status": "success"}, meta=ToolMeta(show_cart=True))

    def _get_menu(self, phone, session, args) -> ToolResult:
        return ToolResult(response={"status": "success"}, meta=ToolMeta(show_menu=True))

    def _get_menu_items(self, phone, session, args: GetMenuItemsArgs) -> ToolResult:
        return ToolResult(response={"status": "success"}, meta=ToolMeta(show_category=args.category_id))

    def _search_menu(self, phone, session, args: SearchMenuArgs) -> ToolResult:
        results = self.menu_store.search_menu(args.query, args.category, args.exclude)
        if not results and args.query and not args.category:
            # "unas gaseosas" names a category rather than a product
            category = detect_category_from_text(args.query)
            if category:
                results = self.menu_store.search_menu(None, category, args.exclude)
        return ToolResult(response={"status": "success", "count": len(results), "results": results})

    # ---- cart ----

    def _add_to_cart(self, phone, session, args: AddToCartArgs) -> ToolResult:
        item = self.menu_store.get_item(args.item_id)
        size_hint = None
        if item is None:
            match = self.menu_store.find_product_match(args.item_id)
            if match is None:
                return _error("Producto no encontrado.")
            item, size_hint = match["item"], match["size"]
            logger.info("Resolved loose item reference %r to %s", args.item_id, item.id)

        requested = args.size or size_hint
        if requested:
            size = resolve_size(item, requested)
            if size is None:
                return _error("Tamaño no disponible.", sizes=list(item.prices))
        elif requires_size(item):
            return ToolResult(response={
                "status": "need_size",
                "message": "Falta el tamaño.",
                "itemId": item.id,
                "itemName": item.name,
                "sizes": list(item.prices),
            })
        else:
            size = next(iter(item.prices), None)

        line = cart_line_for(item, size)
        self.session_manager.add_to_cart(phone, line, args.quantity, session=session)
        return ToolResult(
            response={"status": "success", "message": f"{args.quantity} x {line['name']} añadidos al carrito."},
            meta=ToolMeta(cart_updated=True),
        )

    def _remove_from_cart(self, phone, session, args: RemoveFromCartArgs) -> ToolResult:
        wanted = args.item_id.lower()
        target = next(
            (c for c in session.cart if wanted in (c.product_id.lower(), (c.menu_item_id or "").lower())),
            None,
        )
        if target is None:
            target = self.menu_store.match_cart_item(session.cart, args.item_id)
        if target is None:
            return _error("No se encontró el producto indicado.")
        self.session_manager.remove_from_cart(phone, target.product_id, session=session)
        return ToolResult(
            response={"status": "success", "message": f"{target.name} eliminado del carrito."},
            meta=ToolMeta(cart_updated=True),
        )

    def _add_mixed_pizza(self, phone, session, args: AddMixedPizzaArgs) -> ToolResult:
        pizzas = self.menu_store.get_items_by_category("pizza")
        first = self._find_pizza(pizzas, args.flavor_a)
        second = self._find_pizza(pizzas, args.flavor_b)
        if first is None or second is None:
            return _error("No se encontraron ambos sabores.")
        price_a = first.prices.get(args.size)
        price_b = second.prices.get(args.size)
        if price_a is None or price_b is None:
            return _error("Alguno de los sabores no tiene precio para ese tamaño.")

        name = f"Pizza Mixta ({first.name} / {second.name})"
        line = {
            "product_id": f"mixed_{first.id}_{second.id}_{args.size}",
            "name": name,
            "unit_price": max(price_a, price_b),
            "size": args.size,
        }
        self.session_manager.add_to_cart(phone, line, 1, session=session)
        return ToolResult(
            response={"status": "success", "message": f"Añadí 1x {name} ({args.size}) a tu carrito."},
            meta=ToolMeta(cart_updated=True),
        )

    @staticmethod
    def _find_pizza(pizzas: List[MenuItem], flavor: str) -> Optional[MenuItem]:
        wanted = flavor.strip().lower()
        for pizza in pizzas:
            if wanted in (pizza.name.lower(), pizza.id.lower()):
                return pizza
        match = best_fuzzy_match(flavor, pizzas, key=lambda p: f"{p.name} {' '.join(p.keywords)}")
        if match and match.score >= 2:
            return match.item
        return None

    # ---- delivery and checkout ----

    def _set_delivery_details(self, phone, session, args: SetDeliveryDetailsArgs) -> ToolResult:
        self.session_manager.set_delivery_details(phone, args.name, args.address, session=session)
        pending = session.pending_address_change
        response = {"status": "success"}
        if pending is not None and pending.location is None:
            response["message"] = "Dirección registrada. Falta que el cliente comparta su ubicación."
        return ToolResult(response=response, meta=ToolMeta(delivery_updated=True))

    def _start_checkout(self, phone, session, args) -> ToolResult:
        session.promote_pending_address()
        if not session.name:
            return ToolResult(response={
                "status": "need_name",
                "message": "Para generar tu pedido, primero necesito tu nombre completo. ¿Cómo te llamas?",
            })
        if not session.final_address or session.delivery is None:
            return ToolResult(response={
                "status": "need_address",
                "message": (
                    f"¡Gracias {session.name}! Ahora necesito saber dónde entregarlo. Escribe tu dirección "
                    "y comparte tu ubicación (Maps) para calcular el delivery."
                ),
            })
        return ToolResult(response={"status": "ready", "message": "Checkout listo"}, meta=ToolMeta(show_cart=True))

    def _confirm_order(self, phone, session, args) -> ToolResult:
        session.promote_pending_address()
        pending = session.pending_address_change
        if pending is not None and not pending.is_complete:
            return ToolResult(response={
                "status": "pending_address",
                "message": "Falta cerrar el cambio de dirección: dirección y ubicación.",
            })

        address_text = session.final_address
        if not session.name or not address_text:
            return ToolResult(response={"status": "pending_data", "message": "Faltan datos del cliente."})

        delivery = session.delivery
        if delivery is None or not delivery.cost:
            return ToolResult(response={
                "status": "pending_delivery",
                "message": "Falta calcular el costo de envío. Pide al cliente que comparta su ubicación.",
            })

        if not session.cart:
            return ToolResult(response={"status": "empty_cart", "message": "El carrito está vacío."})

        cart_total = session.cart_total
        total = cart_total + delivery.cost
        self.customer_store.upsert_customer(
            phone,
            name=session.name,
            address=stringify_address(address_text, delivery.location.model_dump()),
        )
        receipt = self.order_store.create_order(OrderInput(
            phone_number=phone,
            source="whatsapp",
            items=[
                OrderItemInput(
                    product_id=line.menu_item_id or line.product_id,
                    product_name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in session.cart
            ],
            total=total,
            status=OrderStatus.confirmed,
        ))

        payload = {
            "status": "confirmed",
            "orderId": receipt.order_id,
            "orderCode": receipt.order_code,
            "total": total,
            "deliveryCost": delivery.cost,
            "summary": [
                {"name": line.name, "quantity": line.quantity, "lineTotal": line.line_total}
                for line in session.cart
            ],
            "address": address_text,
            "name": session.name,
        }
        self.session_manager.reset_session(phone)
        return ToolResult(
            response=payload,
            meta=ToolMeta(
                confirmation_message=format_confirmation(payload),
                stop_conversation=True,
                session_reset=True,
            ),
        )

    def _check_order_status(self, phone, session, args) -> ToolResult:
        last = self.order_store.get_last_order_status(phone)
        if last is None:
            return _error("No tienes pedidos recientes.")
        try:
            label = STATUS_LABELS.get(OrderStatus(last.status), last.status)
        except ValueError:
            label = last.status
        reference = last.order_code or f"...{last.order_id[-4:]}"
        return ToolResult(response={
            "status": "success",
            "orderStatus": last.status,
            "message": f"Tu pedido (ID: {reference}) está: {label}",
        })


def cart_line_for(item: MenuItem, size: Optional[str]) -> Dict[str, Any]:
    """Cart line for a menu item; items with several sizes get one line per size."""
    price = item.prices.get(size) if size else None
    if price is None:
        price = next(iter(item.prices.values()), 0.0)
    if size and len(item.prices) > 1:
        return {
            "product_id": f"{item.id}__{size}",
            "name": f"{item.name} ({size})",
            "unit_price": price,
            "size": size,
            "menu_item_id": item.id,
        }
    return {
        "product_id": item.id,
        "name": item.name,
        "unit_price": price,
        "size": size,
        "menu_item_id": item.id,
    }
