from stabmap.imputation._impute import impute_embedding

__all__ = ["impute_embedding"]
