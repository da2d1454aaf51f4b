
from sqlalchemy import select
from storefront.schema.full_schema import Cart
from sqlalchemy.exc import IntegrityError


async def get_or_create_cart(session,user_id):
    stmt = select(Cart.id).where(Cart.user_id == user_id)
    res = await session.execute(stmt)
    cart_id = res.scalar_one_or_none()
    if cart_id:
        return cart_id

    cart = Cart(user_id=user_id)
    session.add(cart)
    try:
        await session.commit()
        await session.refresh(cart)
        return cart.id
    except IntegrityError:
        # another worker created it first
        await session.rollback()
        stmt = select(Cart.id).where(Cart.user_id == user_id).limit(1)
        res = await session.execute(stmt)
        cart_id = res.scalar_one_or_none()
        return cart_id
