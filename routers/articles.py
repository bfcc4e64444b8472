from typing import List, Optional

from fastapi import APIRouter
from sqlmodel import select

from db import SessionDep
from errors import NotFound
from models import Article, ArticleStatus
from schemas import ArticleCreate, ArticleRead
from .auth import IdentityDep

router = APIRouter(tags=["articles"])


@router.get("/{article_id}", response_model=ArticleRead)
def get_article(article_id: int, session: SessionDep):
    """
    Get a single article by ID.
    """
    article = session.get(Article, article_id)
    if article is None:
        raise NotFound("Article not found", code="ARTICLE_NOT_FOUND")
    return article


@router.post("", response_model=ArticleRead, status_code=201)
def create_article(article_in: ArticleCreate, session: SessionDep, identity: IdentityDep):
    """
    Publish an article for donation. New articles start out available.
    """
    article = Article(
        donor_id=identity.user_id,
        title=article_in.title,
        description=article_in.description,
        category=article_in.category,
        location=article_in.location,
        condition=article_in.condition,
        image_url=article_in.image_url,
        status=ArticleStatus.AVAILABLE,
    )
    session.add(article)
    session.commit()
    session.refresh(article)
    return article


@router.get("", response_model=List[ArticleRead])
def list_articles(
    session: SessionDep,
    category: Optional[str] = None,
    status: Optional[ArticleStatus] = None,
    donorId: Optional[int] = None,
):
    """
    List articles, optionally filtered by category, status and donor.
    """
    query = select(Article)

    if category is not None:
        query = query.where(Article.category == category)

    if status is not None:
        query = query.where(Article.status == status)

    if donorId is not None:
        query = query.where(Article.donor_id == donorId)

    return session.exec(query.order_by(Article.id.desc())).all()
