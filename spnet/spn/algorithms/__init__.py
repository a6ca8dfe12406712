from .inference import likelihood, log_likelihood, nll
