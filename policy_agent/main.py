"""Example FastAPI application protected by the policy agent."""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request

from .agent import PolicyAgent
from .am_types import SessionData
from .config import AgentConfig
from .shield import CookieShield, OAuth2Shield, PolicyShield

agent = PolicyAgent(AgentConfig())

cookie_shield = agent.shield(CookieShield(get_profiles=True))
policy_shield = agent.shield(PolicyShield())


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    agent.destroy()


app = FastAPI(title="AM Policy Agent Example", lifespan=lifespan)
agent.init_app(app)

# Agent endpoints
app.include_router(agent.notifications())
app.include_router(agent.cdsso())


@app.get("/")
def public():
    """Unprotected route."""
    return {"message": "public"}


@app.get("/profile")
def profile(session: SessionData = Depends(cookie_shield)):
    """Any user with a valid session."""
    return {"user": session.data.get("uid"), "profile": session.data}


@app.get("/admin", dependencies=[Depends(cookie_shield), Depends(policy_shield)])
def admin(request: Request):
    """Users whose session is allowed by an AM policy for this URL and method."""
    session: SessionData = request.state.session
    return {"user": session.data.get("uid"), "policies": session.data.get("policies", [])}


@app.get("/api/me")
def api_me(session: SessionData = Depends(agent.shield(OAuth2Shield()))):
    """OAuth2 bearer-protected route; returns the token info."""
    return session.data
