from fastapi import APIRouter

from . import contact


ROUTERS: list[APIRouter] = [module.router for module in [contact]]
