from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..auth_utils import authenticate_user, get_current_user, hash_password
from ..models import RoomUser, User
from ..schemas import LoginRequest, SignupRequest, UpdateProfileRequest, UserOut

router = APIRouter(prefix="/api", tags=["users"])


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def register(req: SignupRequest):
    if await User.filter(username=req.username).exists():
        raise HTTPException(status_code=400, detail="Username already exists")
    user = await User.create(username=req.username, password_hash=hash_password(req.password))
    return UserOut.model_validate(user)


@router.post("/login", response_model=UserOut)
async def login(req: LoginRequest):
    user = await authenticate_user(req.username, req.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return UserOut.model_validate(user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(current_user: User = Depends(get_current_user)):
    # Credentials travel with every request; nothing is held server-side.
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/user", response_model=UserOut)
async def get_me(current_user: User = Depends(get_current_user)):
    return UserOut.model_validate(current_user)


@router.patch("/user", response_model=UserOut)
async def update_me(req: UpdateProfileRequest, current_user: User = Depends(get_current_user)):
    changes = req.model_dump(exclude_unset=True)
    if changes:
        current_user.update_from_dict(changes)
        await current_user.save(update_fields=list(changes))
    return UserOut.model_validate(current_user)


@router.delete("/user/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_me(current_user: User = Depends(get_current_user)):
    await RoomUser.filter(user_id=current_user.id).delete()
    await current_user.delete()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
