from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator

from edemy.utils.security import USERNAME_RE, password_problem

ROLES = ("student", "instructor", "admin")

INTEREST_CATEGORIES = (
    "Web Development", "Mobile Development", "Data Science", "Machine Learning",
    "Artificial Intelligence", "Cloud Computing", "DevOps", "Cybersecurity",
    "Blockchain", "Game Development", "UI/UX Design", "Graphic Design",
    "3D & Animation", "Digital Marketing", "Business", "Finance & Accounting",
    "Entrepreneurship", "Personal Development", "Photography", "Video Production",
    "Music", "Health & Fitness", "Language Learning", "Academic", "Test Prep", "Other",
)
SKILL_LEVELS = ("beginner", "intermediate", "advanced", "expert")
LEARNING_GOALS = (
    "Career Advancement", "Skill Development", "Certification", "Hobby",
    "Academic Requirements", "Business Growth", "Personal Interest", "Other",
)


def _check_password(value: str) -> str:
    problem = password_problem(value)
    if problem:
        raise ValueError(problem)
    return value


Password = Annotated[str, AfterValidator(_check_password)]


class SignupIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=20)
    email: EmailStr
    password: Password

    @field_validator("username")
    @classmethod
    def check_username(cls, v: str) -> str:
        v = v.strip()
        if not USERNAME_RE.match(v):
            raise ValueError("Username must start with a letter or number and contain only letters, numbers and underscores")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return v.lower()


class LoginIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_or_username: str = Field(..., alias="emailOrUsername", min_length=1)
    password: str = Field(..., min_length=1)


class EmailIn(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return v.lower()


class OtpIn(EmailIn):
    otp: str = Field(..., pattern=r"^\d{6}$")


class ResetPasswordIn(EmailIn):
    model_config = ConfigDict(populate_by_name=True)

    new_password: Password = Field(..., alias="newPassword")
    confirm_password: str = Field(..., alias="confirmPassword")


class ChangePasswordIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., alias="currentPassword", min_length=1)
    new_password: Password = Field(..., alias="newPassword")


class ChangePasswordOtpIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    otp: str = Field(..., pattern=r"^\d{6}$")
    new_password: Password = Field(..., alias="newPassword")


class ProfileIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(None, alias="firstName", max_length=50)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=50)
    bio: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=30)
    theme: Optional[str] = Field(None, pattern="^(light|dark)$")
    language: Optional[str] = Field(None, min_length=2, max_length=10)


class InterestsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    categories: List[str] = Field(..., min_length=1, max_length=10)
    skill_level: Optional[str] = Field(None, alias="skillLevel")
    goals: List[str] = Field(default_factory=list)

    @field_validator("categories")
    @classmethod
    def check_categories(cls, v: List[str]) -> List[str]:
        bad = [c for c in v if c not in INTEREST_CATEGORIES]
        if bad:
            raise ValueError(f"Unknown interest categories: {', '.join(bad)}")
        return list(dict.fromkeys(v))

    @field_validator("skill_level")
    @classmethod
    def check_level(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in SKILL_LEVELS:
            raise ValueError(f"skillLevel must be one of {', '.join(SKILL_LEVELS)}")
        return v

    @field_validator("goals")
    @classmethod
    def check_goals(cls, v: List[str]) -> List[str]:
        bad = [g for g in v if g not in LEARNING_GOALS]
        if bad:
            raise ValueError(f"Unknown goals: {', '.join(bad)}")
        return v


class DeleteAccountIn(BaseModel):
    password: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)
