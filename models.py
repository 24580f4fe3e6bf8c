from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class User(db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    google_id = db.Column(db.String(255), unique=True, nullable=False)
    display_name = db.Column(db.String(255))

    def to_dict(self):
        return {"id": self.id, "google_id": self.google_id, "display_name": self.display_name}


class Prediction(db.Model):
    __tablename__ = "predictions"
    id = db.Column(db.String(36), primary_key=True)  # uuid4, generated by the app
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    match_id = db.Column(db.Integer, nullable=False)  # refers to the static catalog, not a table
    team1_score = db.Column(db.Integer)
    team2_score = db.Column(db.Integer)
    # one prediction per user & match:
    __table_args__ = (db.UniqueConstraint("user_id", "match_id", name="uix_user_match"),)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "match_id": self.match_id,
            "team1_score": self.team1_score,
            "team2_score": self.team2_score,
        }
