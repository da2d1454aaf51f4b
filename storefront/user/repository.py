
from sqlalchemy import select, update
from storefront.common.utils import now
from storefront.otp.constants import NotificationChannel
from storefront.schema.full_schema import Credential, CredentialType, PasswordResetToken, Role, UserRole, Users


def contact_filter(channel, contact: str):
    """Predicate selecting the live account a contact identifies on the given channel."""
    channel = NotificationChannel(channel)
    if channel is NotificationChannel.EMAIL:
        clause = Users.email == contact.strip().lower()
    else:
        clause = Users.phone_number == contact.strip()
    return clause & Users.deleted_at.is_(None)


async def find_user(session, clause):
    stmt=select(Users).where(clause).limit(1)
    res=await session.execute(stmt)
    return res.scalar_one_or_none()


async def user_id_by_email(session,email):
    stmt=select(Users.id).where(Users.email==email)
    res=await session.execute(stmt)
    user=res.first()
    return user[0] if user else None


async def user_id_by_phone(session,phone_number):
    stmt=select(Users.id).where(Users.phone_number==phone_number)
    res=await session.execute(stmt)
    user=res.first()
    return user[0] if user else None


async def role_by_name(session,role_name):
    stmt=select(Role).where(Role.name==role_name)
    res=await session.execute(stmt)
    return res.scalar_one_or_none()


async def user_has_role(session,user_id,role_id):
    stmt=select(UserRole.id).where(UserRole.user_id==user_id,UserRole.role_id==role_id)
    res=await session.execute(stmt)
    return res.first() is not None


async def password_credential(session,user_id):
    stmt=(select(Credential)
          .where(Credential.user_id==user_id,
                 Credential.type==CredentialType.PASSWORD.value,
                 Credential.revoked_at.is_(None))
          .limit(1))
    res=await session.execute(stmt)
    return res.scalar_one_or_none()


async def usable_reset_token(session,user_id,token_hash):
    stmt=(select(PasswordResetToken)
          .where(PasswordResetToken.user_id==user_id,
                 PasswordResetToken.token_hash==token_hash,
                 PasswordResetToken.used_at.is_(None),
                 PasswordResetToken.expires_at > now())
          .limit(1))
    res=await session.execute(stmt)
    return res.scalar_one_or_none()


async def retire_reset_tokens(session,user_id):
    stmt=(update(PasswordResetToken)
          .where(PasswordResetToken.user_id==user_id,PasswordResetToken.used_at.is_(None))
          .values(used_at=now()))
    await session.execute(stmt)
