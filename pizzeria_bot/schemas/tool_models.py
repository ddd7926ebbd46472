"""Typed arguments for every tool the language model can call.

Model output is untrusted: arguments are validated here, at the tool
execution boundary, before any session or order state is touched.
"""
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

CategoryId = Literal["pizza", "lasagna", "drink", "extra"]


class ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ShowCartArgs(ToolArgs):
    pass


class GetMenuArgs(ToolArgs):
    pass


class GetMenuItemsArgs(ToolArgs):
    category_id: CategoryId = Field(alias="categoryId")


class SearchMenuArgs(ToolArgs):
    query: Optional[str] = None
    category: Optional[CategoryId] = None
    exclude: List[str] = Field(default_factory=list)


class AddToCartArgs(ToolArgs):
    item_id: str = Field(alias="itemId", min_length=1)
    quantity: int = Field(1, ge=1, le=50)
    size: Optional[str] = None


class RemoveFromCartArgs(ToolArgs):
    item_id: str = Field(alias="itemId", min_length=1)


class SetDeliveryDetailsArgs(ToolArgs):
    name: str = Field(min_length=1)
    address: str = Field(min_length=1)


class AddMixedPizzaArgs(ToolArgs):
    flavor_a: str = Field(alias="flavorA", min_length=1)
    flavor_b: str = Field(alias="flavorB", min_length=1)
    size: Literal["Grande", "Familiar"]


class StartCheckoutArgs(ToolArgs):
    pass


class ConfirmOrderArgs(ToolArgs):
    pass


class CheckOrderStatusArgs(ToolArgs):
    pass


TOOL_ARGS: Dict[str, Type[ToolArgs]] = {
    "showCart": ShowCartArgs,
    "getMenu": GetMenuArgs,
    "getMenuItems": GetMenuItemsArgs,
    "searchMenu": SearchMenuArgs,
    "addToCart": AddToCartArgs,
    "removeFromCart": RemoveFromCartArgs,
    "setDeliveryDetails": SetDeliveryDetailsArgs,
    "addMixedPizza": AddMixedPizzaArgs,
    "startCheckout": StartCheckoutArgs,
    "confirmOrder": ConfirmOrderArgs,
    "checkOrderStatus": CheckOrderStatusArgs,
}


class ToolMeta(BaseModel):
    show_menu: bool = False
    show_category: Optional[str] = None
    show_cart: bool = False
    cart_updated: bool = False
    delivery_updated: bool = False
    confirmation_message: Optional[str] = None
    stop_conversation: bool = False
    session_reset: bool = False


class ToolResult(BaseModel):
    response: Dict[str, Any]
    meta: ToolMeta = Field(default_factory=ToolMeta)

    @property
    def status(self) -> Optional[str]:
        return self.response.get("status")
