"""
Operations tooling for the LiveKit EKS stack: deploy, DNS, access and checks
"""
