import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Dict

from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from book import Book
from config import settings
from database import get_db_connection
from lending import LendingError, LendingService, NotFound, Unauthenticated, admit
from library import Library
from users import DuplicateEmailError, UserDirectory, UserView

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

library = Library()
directory = UserDirectory()
lending = LendingService(library)

app = FastAPI(title=settings.app_name, version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Models ---
class UserModel(BaseModel):
    id: int
    name: str
    email: str


class BookModel(BaseModel):
    id: int
    title: str
    author: str
    year: int
    borrowed: bool = False
    borrower_id: Optional[int] = None
    borrower: Optional[UserModel] = None
    created_at: Optional[str] = None


class CatalogModel(BaseModel):
    name: str
    user_id: int
    books: List[BookModel]


class BookCreateModel(BaseModel):
    title: str
    author: str
    year: int


class BookUpdateModel(BaseModel):
    title: Optional[str] = Field(default=None, description="Leave empty to keep the current title")
    author: Optional[str] = Field(default=None, description="Leave empty to keep the current author")
    year: Optional[int] = Field(default=None, description="Leave empty to keep the current year")


class RegisterModel(BaseModel):
    name: str
    email: str
    password: str


class LoginModel(BaseModel):
    email: str
    password: str


class SessionModel(BaseModel):
    message: str
    token: str
    user: UserModel


class StatsModel(BaseModel):
    total_books: int
    borrowed_books: int
    available_books: int


# --- Sessions ---
def current_caller(request: Request) -> Optional[int]:
    """Resolve the signed-in user id from the session cookie or a Bearer token."""
    return directory.resolve_session(_session_token(request))


def _session_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(settings.session_cookie_name)


def _user_model(user: Optional[UserView]) -> Optional[UserModel]:
    if user is None:
        return None
    return UserModel(id=user.id, name=user.name, email=user.email)


def _book_model(book: Book, users: Optional[Dict[int, Optional[UserView]]] = None) -> BookModel:
    """Build the response model, resolving the borrower for display only."""
    borrower = None
    if book.borrower_id is not None:
        if users is None:
            borrower = directory.resolve_identity(book.borrower_id)
        else:
            if book.borrower_id not in users:
                users[book.borrower_id] = directory.resolve_identity(book.borrower_id)
            borrower = users[book.borrower_id]
    return BookModel(**book.to_dict(), borrower=_user_model(borrower))


def _book_models(books: List[Book], users: Optional[Dict[int, Optional[UserView]]] = None) -> List[BookModel]:
    users = {} if users is None else users
    return [_book_model(b, users) for b in books]


# --- Error mapping ---
@app.exception_handler(LendingError)
async def lending_error_handler(request: Request, exc: LendingError):
    if isinstance(exc, Unauthenticated):
        return RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc), "error": exc.code})


# --- Health check ---
@app.get("/health")
def health():
    """Lightweight health endpoint with a quick database round trip."""
    db_ok = True
    try:
        conn = get_db_connection()
        conn.execute("SELECT 1")
        conn.close()
    except Exception:
        logger.exception("Health check could not reach the database")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Accounts ---
@app.get("/login")
def login_page(caller: Optional[int] = Depends(current_caller)):
    if caller is not None:
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    return {"message": "Sign in with POST /login", "fields": ["email", "password"]}


@app.get("/register")
def register_page(caller: Optional[int] = Depends(current_caller)):
    if caller is not None:
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    return {"message": "Create an account with POST /register", "fields": ["name", "email", "password"]}


@app.post("/register", response_model=UserModel, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterModel, caller: Optional[int] = Depends(current_caller)):
    if caller is not None:
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    try:
        user = directory.register(payload.name, payload.email, payload.password)
    except DuplicateEmailError:
        return RedirectResponse(url="/register", status_code=status.HTTP_303_SEE_OTHER)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _user_model(user)


@app.post("/login", response_model=SessionModel)
def login(payload: LoginModel, caller: Optional[int] = Depends(current_caller)):
    if caller is not None:
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    user = directory.authenticate(payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    token = directory.create_session(user.id)
    response = JSONResponse(
        content=SessionModel(message="Signed in.", token=token, user=_user_model(user)).model_dump()
    )
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_minutes * 60,
        httponly=True,
        samesite="lax",
    )
    return response


@app.delete("/logout")
def logout(request: Request):
    directory.end_session(_session_token(request))
    response = RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)
    response.delete_cookie(settings.session_cookie_name)
    return response


# --- Catalog ---
@app.get("/", response_model=CatalogModel)
async def index(caller: Optional[int] = Depends(current_caller)):
    books = await lending.list_catalog(caller)
    # directory lookups hit SQLite, keep them off the event loop
    user = await asyncio.to_thread(directory.resolve_identity, caller)
    models = await asyncio.to_thread(_book_models, books, {caller: user})
    return CatalogModel(name=user.name if user else "", user_id=caller, books=models)


@app.get("/books", response_model=List[BookModel])
async def list_books(caller: Optional[int] = Depends(current_caller)):
    books = await lending.list_catalog(caller)
    return await asyncio.to_thread(_book_models, books)


@app.post("/books", response_model=BookModel, status_code=status.HTTP_201_CREATED)
def add_book(payload: BookCreateModel, caller: Optional[int] = Depends(current_caller)):
    admit(caller)
    try:
        book = library.add_book(payload.title, payload.author, payload.year)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _book_model(book)


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int, caller: Optional[int] = Depends(current_caller)):
    admit(caller)
    return _book_model(library.load_book(book_id))


@app.put("/books/{book_id}", response_model=BookModel)
def update_book(book_id: int, payload: BookUpdateModel, caller: Optional[int] = Depends(current_caller)):
    admit(caller)
    # empty strings keep the current value
    title = payload.title or None
    author = payload.author or None
    year = payload.year or None
    if title is None and author is None and year is None:
        raise HTTPException(status_code=400, detail="Provide a title, author and/or year to update.")
    try:
        book = library.update_book(book_id, title=title, author=author, year=year)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if book is None:
        raise NotFound(book_id=book_id)
    return _book_model(book)


@app.delete("/books/{book_id}")
def delete_book(book_id: int, caller: Optional[int] = Depends(current_caller)):
    admit(caller)
    if not library.remove_book(book_id):
        raise NotFound(book_id=book_id)
    return {"message": f"Book {book_id} removed."}


# --- Lending ---
@app.post("/books/{book_id}/borrow", response_model=BookModel)
async def borrow_book(book_id: int, caller: Optional[int] = Depends(current_caller)):
    book = await lending.borrow(book_id, caller)
    return await asyncio.to_thread(_book_model, book)


@app.post("/books/{book_id}/return", response_model=BookModel)
async def return_book(book_id: int, caller: Optional[int] = Depends(current_caller)):
    book = await lending.return_book(book_id, caller)
    return await asyncio.to_thread(_book_model, book)


@app.get("/stats", response_model=StatsModel)
def stats(caller: Optional[int] = Depends(current_caller)):
    admit(caller)
    return StatsModel(**library.get_statistics())
